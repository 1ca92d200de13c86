import os


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


BMC_API_PORT = _int_env("BMC_API_PORT", 8010)
HTTP_TIMEOUT = _int_env("BMC_HTTP_TIMEOUT", 30)

TASK_POLL_INTERVAL = _int_env("BMC_TASK_POLL_INTERVAL", 5)
VOLUME_JOB_TIMEOUT = _int_env("BMC_VOLUME_JOB_TIMEOUT", 300)

CONVERGENCE_GRACE = _int_env("BMC_CONVERGENCE_GRACE", 5)
CONVERGENCE_INTERVAL = _int_env("BMC_CONVERGENCE_INTERVAL", 2)
VOLUME_UPDATE_TIMEOUT = _int_env("BMC_VOLUME_UPDATE_TIMEOUT", 60)
VOLUME_APPEAR_ATTEMPTS = _int_env("BMC_VOLUME_APPEAR_ATTEMPTS", 5)

MEDIA_MOUNT_ATTEMPTS = _int_env("BMC_MEDIA_MOUNT_ATTEMPTS", 20)
MEDIA_MOUNT_INTERVAL = _int_env("BMC_MEDIA_MOUNT_INTERVAL", 1)

RECONNECT_TIMEOUT = _int_env("BMC_RECONNECT_TIMEOUT", 600)
RECONNECT_RETRY_INTERVAL = _int_env("BMC_RECONNECT_RETRY_INTERVAL", 30)
READY_WARMUP = _int_env("BMC_READY_WARMUP", 45)
READY_CHECK_INTERVAL = _int_env("BMC_READY_CHECK_INTERVAL", 10)
READY_TIMEOUT = _int_env("BMC_READY_TIMEOUT", 600)

FIRMWARE_UPDATE_TIMEOUT = _int_env("BMC_FIRMWARE_UPDATE_TIMEOUT", 3000)

HOST_POWER_TIMEOUT = _int_env("BMC_HOST_POWER_TIMEOUT", 120)
HOST_POWER_CHECK_INTERVAL = _int_env("BMC_HOST_POWER_CHECK_INTERVAL", 2)

STRICT_SLOT_RESOLUTION = _bool_env("BMC_STRICT_SLOT_RESOLUTION", False)

DATABASE_URL = str(os.getenv("BMC_DATABASE_URL", "sqlite:///./bmc/data/bmc.db")).strip()
