"""Generate a starter aireview.yaml with the default detection patterns."""

from __future__ import annotations

from pathlib import Path

from ..scope_config import ScopeConfig

HEADER = """# aireview.yaml - AI review detection and outcome tracking
# Generated by: aireview init
#
# Each tool is detected by its account name (matched literally, any case)
# or by a regular expression over the comment body. Risk patterns are
# checked high -> medium -> low. observationWindowDays is how long after
# merge CI failures, bug reports and reverts are attributed to a PR.

"""


def init_config(root: Path | None = None, output: Path | None = None, force: bool = False) -> str:
    """Write the default scope config.

    Args:
        root: Directory to write into (defaults to cwd)
        output: Output file path (defaults to aireview.yaml in root)
        force: Overwrite an existing file

    Returns:
        YAML config string
    """
    if root is None:
        root = Path.cwd()
    if output is None:
        output = root / "aireview.yaml"

    if output.exists() and not force:
        raise FileExistsError(f"{output} already exists (use --force to overwrite)")

    full_content = HEADER + ScopeConfig.default().to_yaml()

    print(f"Writing config to {output}")
    with open(output, "w") as f:
        f.write(full_content)

    return full_content
