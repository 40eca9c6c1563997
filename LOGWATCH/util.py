import os
from typing import Optional, Sequence, Tuple, Union


def pattern_description(pattern: Union[str, Sequence[str]]) -> str:
    if isinstance(pattern, str):
        return pattern
    return ",".join(pattern)


def watch_description(title: Optional[str], patterns: Sequence[str]) -> str:
    return title if title else pattern_description(patterns)


def get_workspace_dir(
    workspace_folders: Optional[Sequence[Tuple[str, str]]],
    workspace_name: Optional[str],
) -> Optional[str]:
    """
    Pick the directory relative patterns are resolved against.

    Args:
        workspace_folders: Ordered (name, path) pairs
        workspace_name: Preferred folder name, falls back to the first folder

    Returns:
        Folder path, or None when there are no workspace folders
    """
    if not workspace_folders:
        return None
    name, path = workspace_folders[0]
    if workspace_name:
        for folder_name, folder_path in workspace_folders:
            if folder_name == workspace_name:
                path = folder_path
                break
    return os.fspath(path)
