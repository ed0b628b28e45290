"""
A stand-in for the ``podman`` CLI used by the end-to-end tests.

Invoked as ``fake_runtime.py STATE_DIR ARGS...`` through a generated shell
wrapper (see :func:`write_wrapper`), so the supervisor sees a single
executable path exactly like a real runtime. State lives in JSON files:

    STATE_DIR/containers/<name>.json   {"status", "pod", "image", "up_at"}
    STATE_DIR/pods/<name>.json         {"ports"}
    STATE_DIR/fs/<name>/...            container filesystem for ``cp``
    STATE_DIR/calls.jsonl              one argv per invocation

Knobs (set through the container's ``--env``):
    FAKE_UP_DELAY=<seconds>   report "Created" for this long after start
    FAKE_EXIT_CODE=<code>     the container's main process exits at once

``run`` and ``start --attach`` stay in the foreground until the container
is stopped or removed, like an attached real runtime.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path

POLL_SECONDS = 0.05


class FakeRuntime:
    """Reads and writes the fake runtime's state directory."""

    def __init__(self, state_dir: Path | str) -> None:
        self.state_dir = Path(state_dir)
        self.containers_dir = self.state_dir / "containers"
        self.pods_dir = self.state_dir / "pods"
        self.fs_dir = self.state_dir / "fs"
        self.executable = ""
        for directory in (self.containers_dir, self.pods_dir, self.fs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # ── state ────────────────────────────────────────────────────────

    def _read(self, path: Path) -> dict | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (FileNotFoundError, ValueError):
            return None

    def _write(self, path: Path, data: dict) -> None:
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, path)

    def container(self, name: str) -> dict | None:
        return self._read(self.containers_dir / f"{name}.json")

    def pod(self, name: str) -> dict | None:
        return self._read(self.pods_dir / f"{name}.json")

    def containers(self) -> dict[str, dict]:
        result = {}
        for path in sorted(self.containers_dir.glob("*.json")):
            data = self._read(path)
            if data is not None:
                result[path.stem] = data
        return result

    def running_containers(self) -> list[str]:
        return [name for name, data in self.containers().items() if data["status"] == "running"]

    def pods(self) -> dict[str, dict]:
        result = {}
        for path in sorted(self.pods_dir.glob("*.json")):
            data = self._read(path)
            if data is not None:
                result[path.stem] = data
        return result

    def put_container(self, name: str, **data) -> None:
        self._write(self.containers_dir / f"{name}.json", data)

    def put_pod(self, name: str, ports: list[str] | None = None) -> None:
        self._write(self.pods_dir / f"{name}.json", {"ports": ports or []})

    def remove_container(self, name: str) -> bool:
        try:
            (self.containers_dir / f"{name}.json").unlink()
        except FileNotFoundError:
            return False
        shutil.rmtree(self.fs_dir / name, ignore_errors=True)
        return True

    def calls(self) -> list[list[str]]:
        path = self.state_dir / "calls.jsonl"
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]

    def record_call(self, argv: list[str]) -> None:
        with open(self.state_dir / "calls.jsonl", "a", encoding="utf-8") as handle:
            handle.write(json.dumps(argv) + "\n")

    # ── commands ─────────────────────────────────────────────────────

    def main(self, argv: list[str]) -> int:
        self.record_call(argv)
        if not argv:
            return _fail("missing command")
        command, args = argv[0], argv[1:]
        if command == "pod":
            if not args:
                return _fail("missing pod command")
            handler = getattr(self, f"cmd_pod_{args[0]}", None)
            args = args[1:]
        else:
            handler = getattr(self, f"cmd_{command}", None)
        if handler is None:
            return _fail(f"unrecognized command {command!r}")
        return handler(args)

    def cmd_version(self, args: list[str]) -> int:
        print(json.dumps({"Client": {"Version": "5.0.0-fake", "OsArch": "linux/amd64"}}))
        return 0

    def cmd_run(self, args: list[str]) -> int:
        env: dict[str, str] = {}
        pod = None
        name = None
        publish: list[str] = []
        rest = list(args)
        while rest and rest[0].startswith("--"):
            flag = rest.pop(0)
            if flag in ("--interactive", "--tty"):
                continue
            value = rest.pop(0)
            if flag == "--env":
                key, _, val = value.partition("=")
                env[key] = val
            elif flag == "--pod":
                pod = value
            elif flag == "--name":
                name = value
            elif flag == "--publish":
                publish.append(value)
        if name is None or not rest:
            return _fail("run requires --name and an image")
        image = rest[0]

        if pod is not None and self.pod(pod) is None:
            return _fail(f"no pod with name or ID {pod} found", 125)
        if self.container(name) is not None:
            return _fail(f"the container name {name!r} is already in use", 125)

        delay = float(env.get("FAKE_UP_DELAY", "0"))
        state = {
            "status": "running",
            "pod": pod,
            "image": image,
            "env": env,
            "publish": publish,
            "up_at": time.time() + delay,
        }
        if "FAKE_EXIT_CODE" in env:
            state["status"] = "exited"
            self.put_container(name, **state)
            print(f"{name}: exiting", file=sys.stderr)
            return int(env["FAKE_EXIT_CODE"])

        self.put_container(name, **state)
        (self.fs_dir / name).mkdir(parents=True, exist_ok=True)
        print(f"{name}: started {image}", flush=True)
        return self._attach(name)

    def cmd_start(self, args: list[str]) -> int:
        name = args[-1]
        state = self.container(name)
        if state is None:
            return _fail(f"no container with name or ID {name!r} found", 125)
        state["status"] = "running"
        state["up_at"] = time.time() + float(state.get("env", {}).get("FAKE_UP_DELAY", "0"))
        self.put_container(name, **state)
        return self._attach(name)

    def _attach(self, name: str) -> int:
        while True:
            state = self.container(name)
            if state is None or state["status"] != "running":
                return 0
            time.sleep(POLL_SECONDS)

    def cmd_stop(self, args: list[str]) -> int:
        name = args[-1]
        state = self.container(name)
        if state is None:
            if "--ignore" in args:
                return 0
            return _fail(f"no container with name or ID {name!r} found", 125)
        state["status"] = "exited"
        self.put_container(name, **state)
        return 0

    def cmd_rm(self, args: list[str]) -> int:
        name = args[-1]
        if not self.remove_container(name) and "--ignore" not in args:
            return _fail(f"no container with name or ID {name!r} found", 1)
        return 0

    def cmd_ps(self, args: list[str]) -> int:
        name = None
        for index, arg in enumerate(args):
            if arg == "--filter":
                name = args[index + 1].partition("=")[2]
        state = self.container(name) if name else None
        if state is None:
            return 0
        if state["status"] != "running":
            print("Exited (0) 1 second ago")
        elif time.time() < state["up_at"]:
            print("Created")
        else:
            print("Up 1 second")
        return 0

    def cmd_exec(self, args: list[str]) -> int:
        name, command = args[0], args[1:]
        state = self.container(name)
        if state is None or state["status"] != "running":
            return _fail(f"container {name} is not running", 125)
        return subprocess.call(command, cwd=self.fs_dir / name)

    def cmd_cp(self, args: list[str]) -> int:
        source, destination = args
        try:
            src = self._resolve(source)
            dst = self._resolve(destination)
        except LookupError as exc:
            return _fail(str(exc), 125)
        if not src.exists():
            return _fail(f"{source}: no such file or directory", 125)
        dst.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)
        return 0

    def _resolve(self, location: str) -> Path:
        head, sep, tail = location.partition(":")
        if not sep or head.startswith("/"):
            return Path(location)
        if self.container(head) is None:
            raise LookupError(f"no container with name or ID {head!r} found")
        return self.fs_dir / head / tail.lstrip("/")

    def cmd_pod_create(self, args: list[str]) -> int:
        publish = [args[i + 1] for i, arg in enumerate(args) if arg == "--publish"]
        name = args[args.index("--name") + 1]
        if self.pod(name) is not None:
            return _fail(f"pod {name} already exists", 125)
        self.put_pod(name, publish)
        return 0

    def cmd_pod_rm(self, args: list[str]) -> int:
        name = args[-1]
        if self.pod(name) is None:
            return _fail(f"no pod with name or ID {name} found", 1)
        for container, state in self.containers().items():
            if state.get("pod") == name:
                self.remove_container(container)
        (self.pods_dir / f"{name}.json").unlink()
        return 0


def _fail(message: str, code: int = 125) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return code


def write_wrapper(directory: Path, state_dir: Path, name: str = "fake-podman") -> Path:
    """Write an executable shell wrapper running this module against ``state_dir``."""
    script = Path(__file__).resolve()
    wrapper = directory / name
    wrapper.write_text(
        "#!/bin/sh\n"
        f'exec "{sys.executable}" "{script}" "{state_dir}" "$@"\n',
        encoding="utf-8",
    )
    wrapper.chmod(0o755)
    return wrapper


if __name__ == "__main__":
    sys.exit(FakeRuntime(sys.argv[1]).main(sys.argv[2:]))
