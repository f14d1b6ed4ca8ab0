"""Self-update guard — the installer may only update an installation of itself."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from strata.errors import ArgumentError, MetadataParseError
from strata.installation.files import read_provisioning_config
from strata.installation.metadata import is_installation, provisioning_file

logger = logging.getLogger(__name__)

TOOL_PACKAGE = "org.strata:strata-installer-pack::zip"
MODULE_PATH_ENV = "STRATA_MODULE_PATH"


def installed_packages(installation_dir: str | Path) -> list[str]:
    try:
        return read_provisioning_config(provisioning_file(installation_dir)).packages
    except MetadataParseError as e:
        raise ArgumentError(f"Unable to parse self-update data of {installation_dir}: {e}") from e


def verify_self_update(installation_dir: str | Path, tool_package: str = TOOL_PACKAGE) -> None:
    """Raise ``ArgumentError`` unless the installation holds exactly the installer package."""
    installation_dir = Path(installation_dir)
    if not is_installation(installation_dir):
        raise ArgumentError(f"Path `{installation_dir}` does not contain an installation provisioned by strata.")

    packages = installed_packages(installation_dir)
    if packages != [tool_package]:
        raise ArgumentError(
            f"Unable to perform self-update - installation at {installation_dir} "
            f"contains packages other than {tool_package}: [{', '.join(packages)}]"
        )
    logger.debug("Self-update target %s verified", installation_dir)


def detect_tool_installation(environ: Mapping[str, str] | None = None) -> Path:
    """Locate the installer's own installation from ``STRATA_MODULE_PATH``."""
    environ = os.environ if environ is None else environ
    module_path = environ.get(MODULE_PATH_ENV)
    if not module_path:
        raise ArgumentError("Unable to locate the strata installation. Use --dir to specify it.")
    return Path(module_path).absolute().parent
