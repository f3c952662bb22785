"""
Guest agent provisioning client.
"""

import threading
from typing import Optional

import requests
from loguru import logger

from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.errors import OperationCancelled, SecretReplacementError, VMUnreachableError

REPLACE_SECRETS_PATH = "/replace-secrets"
SECRET_FIELD = "password"
DEFAULT_AGENT_PORT = 8090

# How often an in-flight request is checked against the cancel token.
CANCEL_POLL_SECONDS = 0.1


def base_url(ip: str, port: int = DEFAULT_AGENT_PORT) -> str:
    return f"http://{ip}:{port}"


class ProvisioningClient:
    """Talks to the in-VM agent over HTTP."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout

    def replace_secret(self, host: str, new_secret: str, cancel: Optional[CancelToken] = None) -> None:
        """
        Ask the guest agent to replace its default secret.

        The request is sent exactly once. With a cancel token the call returns
        as soon as the token is set, even if the agent never answers.

        Raises:
            VMUnreachableError: No response was received
            SecretReplacementError: The agent answered with anything but 200
            OperationCancelled: The token was set before a response arrived
        """
        url = host.rstrip("/") + REPLACE_SECRETS_PATH
        logger.info(f"Replacing guest secret via {url}")

        try:
            response = self._put(url, {SECRET_FIELD: new_secret}, cancel)
        except requests.exceptions.RequestException as e:
            logger.error(f"Guest agent at {host} unreachable: {type(e).__name__}")
            raise VMUnreachableError(host, e) from e

        with response:
            if response.status_code != requests.codes.ok:
                logger.error(f"Guest agent at {host} rejected secret replacement: {response.status_code}")
                raise SecretReplacementError(host, response.status_code)

        logger.info(f"Guest secret replaced on {host}")

    def _put(self, url: str, body: dict, cancel: Optional[CancelToken]) -> requests.Response:
        if cancel is None:
            return self.session.put(url, json=body, timeout=self.timeout)
        if cancel.cancelled:
            raise OperationCancelled()

        outcome = {}
        done = threading.Event()

        def send():
            try:
                outcome["response"] = self.session.put(url, json=body, timeout=self.timeout)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        threading.Thread(target=send, name="ovalaunch-provision", daemon=True).start()
        while not done.wait(CANCEL_POLL_SECONDS):
            if cancel.cancelled:
                logger.warning(f"Secret replacement via {url} cancelled")
                # The sender thread is left to die with its socket.
                self.session.close()
                raise OperationCancelled()

        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]
