from pathlib import Path


def ensure_parent_dir(path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def sibling_tmp_path(path: str | Path) -> Path:
    """Path next to *path* used for write-then-replace updates."""
    p = Path(path)
    return p.with_suffix(p.suffix + ".tmp")
