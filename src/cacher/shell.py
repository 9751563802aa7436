"""Running file operations as the deploying user.

Installed files must be owned by the user they are installed for, so in
normal operation the tree copy runs through ``sudo -u <user>``: ``rsync -a``
for a full copy and ``cp -al`` for a hard-linked copy. In development mode
no privileges are involved and both copies are done in-process.
"""

import logging
import os
import pwd
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Union

from cacher.errors import PrivilegeError, ShellCommandError

logger = logging.getLogger(__name__)


class ShellRunner:
    """Runs commands and tree copies, optionally as another user.

    Args:
        dev_mode: Skip privilege checks and copy in-process
    """

    def __init__(self, dev_mode: bool = False):
        self.dev_mode = dev_mode

    def check_privileges(self, username: Optional[str] = None) -> None:
        """Ensure we run as root and ``username`` exists.

        Raises:
            PrivilegeError: If either check fails (never in dev mode)
        """
        if self.dev_mode:
            return

        if os.geteuid() != 0:
            raise PrivilegeError("cacher must be run as root (or with dev mode enabled)")

        if username is not None:
            try:
                pwd.getpwnam(username)
            except KeyError as e:
                raise PrivilegeError(f"user does not exist: {username}") from e

    def run(self, user: Optional[str], command: str, args: List[str]) -> str:
        """Run ``command`` with ``args``, as ``user`` unless in dev mode.

        Returns:
            Captured stdout

        Raises:
            ShellCommandError: If the command exits nonzero
        """
        cmd = [command, *args]
        if user is not None and not self.dev_mode:
            cmd = ["sudo", "-u", user, "--", *cmd]

        logger.debug(f"Running {' '.join(cmd)}")
        process = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
        )
        if process.returncode != 0:
            raise ShellCommandError(cmd, process.returncode, process.stderr)
        return process.stdout

    def sync_tree(
        self, user: Optional[str], source: Union[str, Path], target: Union[str, Path]
    ) -> None:
        """Mirror-copy the contents of ``source`` into ``target`` (archive mode)."""
        if self.dev_mode:
            shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
            return
        self.run(user, "rsync", ["-a", f"{source}/", f"{target}/"])

    def link_tree(
        self, user: Optional[str], source: Union[str, Path], target: Union[str, Path]
    ) -> None:
        """Copy ``source`` into ``target`` with hard links instead of file copies.

        Files that already exist in ``target`` make the copy fail, so callers
        remove them first.
        """
        if self.dev_mode:
            shutil.copytree(
                source, target, symlinks=True, copy_function=os.link, dirs_exist_ok=True
            )
            return
        self.run(user, "cp", ["-al", f"{source}/.", f"{target}/"])
