"""
Request validation for the miniui object.

Each method that takes input has a frozen pydantic model describing its
fields. Field types are strict: a number where a string is expected is a
malformed request, not something to coerce. Unknown fields are ignored.

Upgrade sources additionally pass an allowlist: an ``http://`` or
``https://`` URL, or an absolute path inside the scratch directory.
"""

from __future__ import annotations

import posixpath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from miniui.errors import InvalidArgumentError
from miniui.logging import get_logger

logger = get_logger(__name__)

ALLOWED_URL_SCHEMES = ("http://", "https://")
DEFAULT_SCRATCH_DIR = "/tmp/"


class ApplyLanParams(BaseModel):
    """Fields of ``apply_lan``.

    Attributes:
        ipaddr: LAN address; syntax is checked by the apply script.
        netmask: LAN netmask, passed as an empty argument when absent.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ipaddr: StrictStr = Field(min_length=1)
    netmask: StrictStr = ""


class SysupgradeParams(BaseModel):
    """Fields of ``sysupgrade``.

    Attributes:
        source: Image URL or scratch-directory path.
        keep: Keep configuration across the upgrade.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    source: StrictStr
    keep: StrictBool = True


# Field signatures published through method listing
METHOD_SIGNATURES: dict[str, dict[str, str]] = {
    "status": {},
    "apply_lan": {"ipaddr": "string", "netmask": "string"},
    "reload_network": {},
    "sysupgrade": {"source": "string", "keep": "boolean"},
}


def _describe_errors(error: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]),
            "reason": item["msg"],
        }
        for item in error.errors()
    ]


def _parse(model: type[BaseModel], method: str, params: dict[str, Any]) -> Any:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        errors = _describe_errors(e)
        logger.warning(
            "Rejected request fields",
            extra={"method": method, "errors": errors},
        )
        raise InvalidArgumentError(
            f"Invalid arguments for {method}",
            details={"method": method, "errors": errors},
        ) from e


def is_allowed_source(source: str, scratch_dir: str = DEFAULT_SCRATCH_DIR) -> bool:
    """
    Check an upgrade source against the allowlist.

    Args:
        source: Image URL or local path.
        scratch_dir: Directory (with trailing '/') local images must be in.

    Returns:
        True for http(s) URLs and for absolute paths inside scratch_dir
        that do not climb out of it through '..' components.

    Example:
        >>> is_allowed_source("https://fw.example/img.bin")
        True
        >>> is_allowed_source("/etc/passwd")
        False
    """
    if not source:
        return False

    if source.startswith(ALLOWED_URL_SCHEMES):
        return True

    if not source.startswith(scratch_dir):
        return False

    return posixpath.normpath(source).startswith(scratch_dir)


def validate_apply_lan(params: dict[str, Any]) -> ApplyLanParams:
    """
    Validate ``apply_lan`` fields.

    Raises:
        InvalidArgumentError: If ipaddr is missing, empty or not a string,
            or netmask is not a string.
    """
    return _parse(ApplyLanParams, "apply_lan", params)


def validate_sysupgrade(
    params: dict[str, Any],
    scratch_dir: str = DEFAULT_SCRATCH_DIR,
) -> SysupgradeParams:
    """
    Validate ``sysupgrade`` fields and the source allowlist.

    Raises:
        InvalidArgumentError: If source is missing or not allowed, or a field
            has the wrong type.
    """
    request = _parse(SysupgradeParams, "sysupgrade", params)

    if not is_allowed_source(request.source, scratch_dir):
        logger.warning(
            "Rejected upgrade source",
            extra={"source": request.source, "scratch_dir": scratch_dir},
        )
        raise InvalidArgumentError(
            "Upgrade source must be an http(s) URL or a file in the scratch directory",
            details={"field": "source", "scratch_dir": scratch_dir},
        )

    return request
