import enum
import logging
import time
from functools import partial

import requests

from wol import InvalidAddress, TransmitFailed, send_wol_packet

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 2  # seconds


class WakeFailed(Exception):
    """The wake packet could not be sent, so the backend can't be woken."""


class WakeState(enum.Enum):
    CHECKING = "checking"
    WAKING = "waking"
    POLLING = "polling"
    UP = "up"
    TIMED_OUT = "timed_out"


def is_server_awake(url, timeout=PROBE_TIMEOUT):
    try:
        response = requests.request(method='GET', url=url, timeout=timeout, stream=True)
    except requests.RequestException as e:
        logger.info(f"Awake check to {url} failed: {e}")
        return False
    try:
        logger.debug(f"Awake check to {url} status: {response.status_code}")
        if 200 <= response.status_code < 300:
            return True
        logger.info(f"Server at {url} responded status {response.status_code}. Considering not awake.")
        return False
    finally:
        # Body is never read; hand the connection back.
        response.close()


class WakeOrchestrator:
    """
    Brings the backend from unknown or down to confirmed up.

    A run checks the backend once. If it's down, a single magic packet is
    sent and the backend is polled, waiting `check_interval` seconds
    between probes, for at most `retry_attempts` retries. The wait is the
    only blocking point and only blocks the calling thread. A run holds no
    state beyond its own retry counter, so a fresh orchestrator (or a fresh
    run) is used for every request.
    """

    def __init__(self, config, probe=None, transmit=None, sleep=time.sleep):
        self.config = config
        self.probe = probe or partial(is_server_awake, config.server_url + '/')
        self.transmit = transmit or partial(
            send_wol_packet,
            config.mac_address,
            config.wol_port,
            ip_address=config.broadcast_address,
        )
        self.sleep = sleep

    def run(self):
        """Drive the wake sequence and return WakeState.UP or WakeState.TIMED_OUT.

        Raises WakeFailed when the magic packet can't be sent.
        """
        state = WakeState.CHECKING
        attempts = 0
        while True:
            if state is WakeState.CHECKING:
                state = WakeState.UP if self.probe() else WakeState.WAKING

            elif state is WakeState.WAKING:
                logger.info("Server is down, sending Wake-on-LAN packet...")
                try:
                    self.transmit()
                except (TransmitFailed, InvalidAddress) as e:
                    raise WakeFailed(str(e)) from e
                logger.info("Waiting for the server to wake up...")
                state = WakeState.POLLING
                attempts = 0

            elif state is WakeState.POLLING:
                if self.probe():
                    logger.info("Server is back up!")
                    state = WakeState.UP
                elif attempts < self.config.retry_attempts:
                    attempts += 1
                    logger.debug(
                        f"Server not awake yet, retry {attempts}/{self.config.retry_attempts} "
                        f"in {self.config.check_interval} seconds"
                    )
                    self.sleep(self.config.check_interval)
                else:
                    logger.error(f"Server did not wake up after {self.config.retry_attempts} retries")
                    state = WakeState.TIMED_OUT

            else:
                return state
