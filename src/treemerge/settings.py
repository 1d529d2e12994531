from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, computed_field

from treemerge.config import DEFAULT_OUTPUT_STEM, DEFAULT_OUTPUT_SUFFIX, HeaderStyle

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "TREEMERGE_"


def env_default(name: str, fallback: str = "") -> str:
    """Read a ``TREEMERGE_*`` default from the environment or the nearest ``.env`` file.

    Values already present in the environment win over the ``.env`` file.

    Args:
        name (str): the setting name, without the prefix (e.g. "HEADER_STYLE")
        fallback (str): the value returned when the variable is unset or empty

    Returns:
        str: the configured value, or `fallback`
    """
    if ENV_FILE:
        load_dotenv(ENV_FILE, override=False)
    return os.environ.get(ENV_PREFIX + name, "").strip() or fallback


class Settings(BaseModel):
    """Resolved configuration of one merge run."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    root: Path = Field(..., description="Root directory to merge.")
    output: Path | None = Field(default=None, description="Output file; defaults to <dirname>.txt.")
    include: list[str] = Field(default_factory=list, description="Include glob.")
    exclude: list[str] = Field(default_factory=list, description="Exclude glob.")
    ext: list[str] = Field(default_factory=list, description="Extension allowlist.")
    all_files: bool = Field(default=False, description="Disable built-in excludes.")
    split_every: int | None = Field(
        default=None,
        gt=0,
        description="Line count after which to split output.",
    )
    header_style: HeaderStyle = Field(default=HeaderStyle.HASH, description="Header style.")
    follow_symlinks: bool = Field(default=False, description="Follow symlinked directories.")
    no_confirm: bool = Field(default=False, description="Skip confirmation prompts.")
    dry_run: bool = Field(default=False, description="Report without writing files.")
    verbose: bool = Field(default=False, description="Verbose logging.")
    log_file: str = Field(default="", description="Log file path.")
    workers: int | None = Field(default=None, gt=0, description="Classification worker threads.")

    @computed_field
    @property
    def output_base(self) -> Path:
        """Output path of the first chunk, derived from the root name when unset."""
        if self.output is not None:
            return self.output
        name = self.root.resolve().name or DEFAULT_OUTPUT_STEM
        return Path(f"{name}{DEFAULT_OUTPUT_SUFFIX}")
