"""Shared fixtures."""
import json
import socket
import threading
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest

from ovalaunch.core.errors import ExecutionError, OperationCancelled
from ovalaunch.core.executor import CommandExitError, ExecutionResult
from ovalaunch.vbox.driver import HostOnlyInterface


@pytest.fixture
def agent_server():
    """A local HTTP server playing the in-VM provisioning agent."""
    state = SimpleNamespace(status=200, requests=[])

    class Handler(BaseHTTPRequestHandler):
        def do_PUT(self):
            length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(length)
            state.requests.append(
                {
                    "path": self.path,
                    "content_type": self.headers.get("Content-Type"),
                    "body": json.loads(body or b"null"),
                }
            )
            self.send_response(state.status)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    state.url = f"http://127.0.0.1:{server.server_port}"
    try:
        yield state
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port_url():
    """URL of a local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}"


@pytest.fixture
def stalled_agent_url():
    """URL of a local listener that accepts connections and never answers."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    try:
        yield f"http://127.0.0.1:{listener.getsockname()[1]}"
    finally:
        listener.close()


class FakeVBoxManage:
    """
    In-memory VBoxManage standing in for CommandExecutor.

    Tracks registered VMs, running VMs, host-only interfaces and NIC
    attachments, and renders the same text the real tool prints.
    """

    def __init__(self):
        self.calls = []
        self.registered = set()
        self.running = set()
        self.hostonlyifs = []
        self.attached = {}
        # argument prefix -> output printed before exiting 1
        self.failures = {}
        # argument prefix -> callable(args) run before the command
        self.hooks = {}

    def run(self, program, args, cancel=None):
        args = [str(arg) for arg in args]
        self.calls.append(args)

        hook = self._lookup(self.hooks, args)
        if hook is not None:
            hook(args)
        if cancel is not None and cancel.cancelled:
            return self._error(program, args, OperationCancelled(), b"")

        failure = self._lookup(self.failures, args)
        if failure is not None:
            return self._error(program, args, CommandExitError(1), failure)

        try:
            output = self._dispatch(args)
        except KeyError as e:
            message = f"VBoxManage: error: Could not find a registered machine named '{e.args[0]}'\n"
            return self._error(program, args, CommandExitError(1), message.encode())
        return ExecutionResult(program=program, args=args, output=output, return_code=0)

    def commands(self, name):
        return [call for call in self.calls if call[0] == name]

    def _dispatch(self, args):
        command = args[0]
        if args[:3] == ["list", "vms", "--long"]:
            return self._long_listing()
        if args[:2] == ["list", "vms"]:
            return "".join(f'"{name}" {{{uuid.uuid4()}}}\n' for name in sorted(self.registered)).encode()
        if args[:2] == ["list", "hostonlyifs"]:
            return "\n".join(
                f"Name:            {iface.name}\n"
                f"GUID:            {uuid.uuid4()}\n"
                f"DHCP:            Disabled\n"
                f"IPAddress:       {iface.ip}\n"
                f"NetworkMask:     {iface.netmask}\n"
                f"IPV6Address:     fe80:0000:0000:0000:0800:27ff:fe00:0000\n"
                for iface in self.hostonlyifs
            ).encode()
        if args[:2] == ["hostonlyif", "create"]:
            name = f"vboxnet{len(self.hostonlyifs)}"
            self.hostonlyifs.append(HostOnlyInterface(name=name, ip="", netmask=""))
            return f"0%...100%\nInterface '{name}' was successfully created\n".encode()
        if args[:2] == ["hostonlyif", "ipconfig"]:
            iface = next(i for i in self.hostonlyifs if i.name == args[2])
            iface.ip = args[args.index("--ip") + 1]
            iface.netmask = args[args.index("--netmask") + 1]
            return b""
        if command == "import":
            self.registered.add(args[args.index("--vmname") + 1])
            return b"Successfully imported the appliance.\n"
        if command == "modifyvm":
            self._require(args[1])
            self.attached[args[1]] = args[args.index("--hostonlyadapter2") + 1]
            return b""
        if command == "startvm":
            self._require(args[1])
            self.running.add(args[1])
            return f'VM "{args[1]}" has been successfully started.\n'.encode()
        if command == "showvminfo":
            self._require(args[1])
            state = "running" if args[1] in self.running else "poweroff"
            return f'name="{args[1]}"\nVMState="{state}"\nVMStateChangeTime="2026-10-18T09:00:00.000000000"\n'.encode()
        if command == "controlvm":
            self._require(args[1])
            self.running.discard(args[1])
            return b"0%...100%\n"
        if command == "unregistervm":
            self._require(args[1])
            self.registered.discard(args[1])
            self.running.discard(args[1])
            self.attached.pop(args[1], None)
            return b"0%...100%\n"
        return b""

    def _long_listing(self):
        blocks = []
        for name in sorted(self.registered | set(self.attached)):
            lines = [f"Name:                        {name}"]
            if name in self.attached:
                lines.append(
                    "NIC 2:                       MAC: 0800270A0B0C, "
                    f"Attachment: Host-only Interface '{self.attached[name]}', Cable connected: on"
                )
            blocks.append("\n".join(lines))
        return ("\n\n".join(blocks) + "\n").encode()

    def _require(self, name):
        if name not in self.registered:
            raise KeyError(name)

    @staticmethod
    def _lookup(table, args):
        for size in (3, 2, 1):
            key = tuple(args[:size])
            if key in table:
                return table[key]
        return None

    @staticmethod
    def _error(program, args, cause, output):
        return ExecutionResult(
            program=program,
            args=args,
            output=output,
            return_code=1,
            error=ExecutionError(program, args, cause, output),
        )


@pytest.fixture
def vbox():
    return FakeVBoxManage()
