"""Forward a local port to the Portworx SDK service through kubectl."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import Sequence

logger = logging.getLogger(__name__)

_READ_SIZE = 1024


class PortForwardError(RuntimeError):
    """Raised when the port forward cannot be set up."""


def get_endpoint_from_kubectl_output(sbuf: str) -> str:
    """Extract the local endpoint from the first output of ``kubectl port-forward``."""
    index = sbuf.find("127.0.0.1:")
    if index >= 0:
        address = sbuf[index:].split(" ")[0]
        return "localhost:" + address.split(":")[1]

    index = sbuf.find("[::1]:")
    if index >= 0:
        return sbuf[index:].split(" ")[0]

    logger.warning("Unable to find 127.0.0.1 or [::1]: in [%s]", sbuf)
    raise PortForwardError("Failed to determine endpoint information")


class KubectlPortForwarder:
    """Runs ``kubectl port-forward`` to a Kubernetes service.

    If ``kubeconfig`` is empty kubectl uses its default configuration.
    ``extra_args`` are passed to kubectl before the port-forward arguments.
    """

    def __init__(
        self,
        kubeconfig: str = "",
        *,
        service_namespace: str = "kube-system",
        service_name: str = "portworx-service",
        service_port: str = "9020",
        extra_args: Sequence[str] = (),
    ) -> None:
        self.kubeconfig = kubeconfig
        self.service_namespace = service_namespace
        self.service_name = service_name
        self.service_port = str(service_port)
        self.extra_args = list(extra_args)
        self._endpoint = ""
        self._process: subprocess.Popen | None = None
        self._previous_sigint = None
        self._sigint_installed = False
        self._lock = threading.RLock()
        self._running = False

    def _command(self) -> list[str]:
        args = []
        if self.kubeconfig:
            args.append(f"--kubeconfig={self.kubeconfig}")
        args.extend(self.extra_args)
        args.extend(
            [
                "-n",
                self.service_namespace,
                "port-forward",
                f"svc/{self.service_name}",
                f":{self.service_port}",
            ]
        )
        return ["kubectl", *args]

    def start(self) -> None:
        """Start kubectl and read the local endpoint it listens on."""
        with self._lock:
            if self._running:
                raise PortForwardError("Tunnel already running")

            command = self._command()
            logger.debug("port-forward: args %s", command[1:])

            self._install_sigint()
            try:
                self._process = subprocess.Popen(command, stdout=subprocess.PIPE)
            except OSError as err:
                logger.error("Error while executing %s: %s", command, err)
                self._cleanup()
                raise PortForwardError(
                    "Unable to execute kubectl. Please make sure kubectl is in your path"
                ) from err

            try:
                data = os.read(self._process.stdout.fileno(), _READ_SIZE)
            except OSError as err:
                logger.warning("Error reading kubectl output: %s", err)
                data = b""
            if not data:
                self._cleanup()
                raise PortForwardError(
                    "Failed to setup connection to Portworx cluster to svc "
                    f"{self.service_namespace}/{self.service_name} "
                    f"port {self.service_port}"
                )

            output = data.decode(errors="replace")
            try:
                self._endpoint = get_endpoint_from_kubectl_output(output)
            except PortForwardError:
                self._cleanup()
                raise

            logger.info("Connected to %s", self._endpoint)
            logger.debug("Read %d bytes", len(data))
            logger.debug("Output: %s", output)
            self._running = True

    def stop(self) -> None:
        """Stop kubectl if it is running."""
        with self._lock:
            if not self._running:
                return
            logger.debug("Port forwarding stopped")
            self._cleanup()
            self._running = False

    def endpoint(self) -> str:
        """Return the local endpoint of the forwarded port."""
        return self._endpoint

    def _cleanup(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            if process.poll() is None:
                process.kill()
            process.wait()
            if process.stdout is not None:
                process.stdout.close()
        self._restore_sigint()

    def _install_sigint(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        self._previous_sigint = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, self._on_sigint)
        self._sigint_installed = True

    def _restore_sigint(self) -> None:
        if not self._sigint_installed:
            return
        previous = self._previous_sigint
        signal.signal(
            signal.SIGINT, previous if previous is not None else signal.SIG_DFL
        )
        self._sigint_installed = False
        self._previous_sigint = None

    def _on_sigint(self, signum, frame) -> None:
        previous = self._previous_sigint
        self.stop()
        if callable(previous):
            previous(signum, frame)
        elif previous != signal.SIG_IGN:
            raise KeyboardInterrupt