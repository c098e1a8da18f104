"""
Pytest configuration and fixtures.

Logging options, plus a catalog service wired to a stub through the local
transport, sharing a codec that knows the catalog exception types.
"""

import logging
import sys

import pytest

from pyflange import LocalTransport, ServiceSkeleton, ServiceStub, ValueCodec

from .fixtures.services import CATALOG_CODEC_CONFIG, CatalogApi, CatalogService


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Set up logging
    log_level = logging.DEBUG if config.getoption("--debug-pyflange") else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Set specific logger levels
    logging.getLogger("pyflange").setLevel(log_level)
    logging.getLogger("asyncio").setLevel(log_level)

    # If custom log file is specified, add file handler
    custom_log_file = config.getoption("--pyflange-log-file")
    if custom_log_file:
        file_handler = logging.FileHandler(custom_log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--debug-pyflange",
        action="store_true",
        default=False,
        help="Enable debug logging for pyflange (shows marshalled payloads with FLANGE_DEBUG_MARSHALLING=1)",
    )
    parser.addoption(
        "--pyflange-log-file",
        action="store",
        default=None,
        help="Log pyflange debug output to specified file",
    )


@pytest.fixture
def codec():
    return ValueCodec(CATALOG_CODEC_CONFIG)


@pytest.fixture
def service():
    return CatalogService()


@pytest.fixture
def skeleton(service, codec):
    return ServiceSkeleton.for_api(CatalogApi, service, codec)


@pytest.fixture
def local_transport(skeleton):
    transport = LocalTransport({"flange-test-CatalogApi": skeleton})
    yield transport
    transport.close()


@pytest.fixture
def stub(local_transport, codec):
    config = {"env": "test", "max_workers": 2}
    with ServiceStub.for_api(CatalogApi, local_transport, config, codec) as service_stub:
        yield service_stub


@pytest.fixture
def catalog(stub):
    return stub.create_proxy(CatalogApi)
