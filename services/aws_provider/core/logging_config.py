"""
Provider logging setup.

Entry point for callers: invoke ``setup_logging()`` once at process startup,
before constructing ``AwsProvider``. The provider itself never reconfigures
logging, so embedding applications keep their own handlers.
"""

import logging
from typing import Mapping, Optional

from services.aws_provider.config import ProviderSettings
from services.common.core.logging_config import setup_logging as common_setup_logging

SDK_LOGGERS = ("botocore", "boto3")


def setup_logging(
    settings: Optional[ProviderSettings] = None,
    environ: Optional[Mapping[str, str]] = None,
):
    """
    Load the YAML config and initialize logging.
    Also raise the SDK loggers to DEBUG when the debug switch is on.
    """
    settings = settings or ProviderSettings()
    common_setup_logging(
        settings.log_config_path(), environ=environ, default_level=settings.LOG_LEVEL
    )

    if settings.AWS_PROVIDER_DEBUG:
        for name in SDK_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)
        logging.getLogger("aws_provider").setLevel(logging.DEBUG)
