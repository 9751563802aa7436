"""Demonstration of the cacher lifecycle.

This script walks one cache item through every tier:
1. Push a build directory to a file:// remote store
2. Pull it into the local cache
3. Install, upgrade and uninstall it for the current user
4. Clean superseded versions

Everything runs in dev mode inside a temporary directory, so no root,
sudo or cloud credentials are needed.
"""

import getpass
import tempfile
from pathlib import Path

from cacher import Cacher, CacherConfig


def write_build(root, files):
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def show(result):
    print(f"✓ {result.action}: {result.key} ({result.version}) {result.path or ''}")


def demo_lifecycle(workdir):
    """Push, pull, install and upgrade one key."""
    config = CacherConfig(
        cache_dir=workdir / "cache",
        remote_root=str(workdir / "bucket"),
        dev_mode=True,
        settle_hours=0,
    )
    cacher = Cacher(config, getpass.getuser())
    key = "demo:service:web"

    print("=" * 70)
    print("CACHER LIFECYCLE DEMONSTRATION")
    print("=" * 70)

    # 1. Push two versions
    print("\n1. Push")
    print("-" * 70)
    v1 = write_build(workdir / "build-1", {"bin/web": "v1", "static/old.css": "old"})
    v2 = write_build(workdir / "build-2", {"bin/web": "v2", "static/new.css": "new"})
    show(cacher.push(v1, key, "1.0"))

    # 2. Pull
    print("\n2. Pull")
    print("-" * 70)
    show(cacher.pull(key))
    show(cacher.pull(key))

    # 3. Install, then upgrade in place
    print("\n3. Install and upgrade")
    print("-" * 70)
    target = workdir / "srv"
    target.mkdir()
    show(cacher.install(key, target))
    show(cacher.push(v2, key, "1.1"))
    for result in cacher.upgrade():
        show(result)
    print(f"Installed files: {sorted(str(p.relative_to(target)) for p in target.rglob('*') if p.is_file())}")

    # 4. Reporting
    print("\n4. Status")
    print("-" * 70)
    for tier, info in [
        ("remote", cacher.remoteinfo()),
        ("local", cacher.localinfo()),
        ("installed", cacher.installedinfo()),
    ]:
        for item_key, item in info.items():
            print(f"{tier:>9}: {item_key} {item}")

    # 5. Retention
    print("\n5. Clean")
    print("-" * 70)
    for result in cacher.cleanlocal() + cacher.cleanremote():
        show(result)

    show(cacher.uninstall(key))
    print(f"Target empty after uninstall: {not any(target.iterdir())}")


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmpdir:
        demo_lifecycle(Path(tmpdir))
