from pathlib import Path
from typing import List


def stored_files(images_dir: Path) -> List[Path]:
    """Every file under the shard root, sorted."""
    if not images_dir.exists():
        return []
    return sorted(p for p in images_dir.rglob("*") if p.is_file())
