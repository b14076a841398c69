"""GitHub Actions step outputs."""

import uuid
from typing import Optional


def set_output(output_file: Optional[str], name: str, value: Optional[str]) -> None:
    """Append a step output to the GITHUB_OUTPUT file. No-op without a file."""
    if not output_file:
        return

    value = "" if value is None else str(value)
    with open(output_file, "a") as f:
        if "\n" in value:
            delimiter = uuid.uuid4().hex
            f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        else:
            f.write(f"{name}={value}\n")
