import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import txsubmitter.constants as C

pkg_root = Path(__file__).parent
config_file = Path(os.getenv("CONFIG_FILE", pkg_root / "config.toml"))

cfg = tomllib.loads(config_file.read_text())


@dataclass
class ResubmissionConfig:
    """Gas price escalation policy. Prices are in gwei, the timeout in milliseconds."""

    resubmission_timeout: int = C.DEFAULT_RESUBMISSION_TIMEOUT
    min_gas_price_in_gwei: float | None = C.DEFAULT_MIN_GAS_PRICE_GWEI
    max_gas_price_in_gwei: float = C.DEFAULT_MAX_GAS_PRICE_GWEI
    gas_retry_increment: float = C.DEFAULT_GAS_RETRY_INCREMENT
    # Keep waiting on the other in-flight attempts when one fails to send
    continue_on_send_error: bool = False

    def __post_init__(self):
        if self.resubmission_timeout <= 0:
            raise ValueError(f"resubmission_timeout must be positive, got {self.resubmission_timeout}")
        if self.gas_retry_increment < 0:
            raise ValueError(f"gas_retry_increment must not be negative, got {self.gas_retry_increment}")
        if self.min_gas_price_in_gwei is not None and self.min_gas_price_in_gwei > self.max_gas_price_in_gwei:
            raise ValueError(
                f"min_gas_price_in_gwei ({self.min_gas_price_in_gwei}) exceeds "
                f"max_gas_price_in_gwei ({self.max_gas_price_in_gwei})"
            )

    @classmethod
    def from_dict(cls, d: dict) -> "ResubmissionConfig":
        return cls(
            resubmission_timeout=int(d.get("resubmission_timeout", C.DEFAULT_RESUBMISSION_TIMEOUT)),
            min_gas_price_in_gwei=d.get("min_gas_price_in_gwei"),
            max_gas_price_in_gwei=d.get("max_gas_price_in_gwei", C.DEFAULT_MAX_GAS_PRICE_GWEI),
            gas_retry_increment=d.get("gas_retry_increment", C.DEFAULT_GAS_RETRY_INCREMENT),
            continue_on_send_error=bool(d.get("continue_on_send_error", False)),
        )


@dataclass
class MpcSettings:
    url: str
    max_timeout: int = C.MPC_SIGN_MAX_TIMEOUT  # ms
    interval: int = C.MPC_SIGN_POLL_INTERVAL  # ms


@dataclass
class Settings:
    rpc_url: str
    mpc: MpcSettings
    resubmission: ResubmissionConfig = field(default_factory=ResubmissionConfig)
    num_confirmations: int = C.DEFAULT_NUM_CONFIRMATIONS
    rpc_timeout: float = C.RPC_TIMEOUT
    private_key: str | None = None


def load_config(conf: dict | None = None, env: dict | None = None) -> Settings:
    """Build Settings from the parsed TOML, letting environment variables win."""
    conf = cfg if conf is None else conf
    env = os.environ if env is None else env

    mpc = conf.get("mpc", {})
    rpc = conf.get("rpc", {})
    signer = conf.get("signer", {})
    key_var = signer.get("private_key_env", "SIGNER_PRIVATE_KEY")

    return Settings(
        rpc_url=env.get("RPC_URL", rpc.get("url", "http://localhost:8545")),
        rpc_timeout=float(rpc.get("timeout", C.RPC_TIMEOUT)),
        mpc=MpcSettings(
            url=env.get("MPC_URL", mpc.get("url", "http://localhost:8080")),
            max_timeout=int(mpc.get("max_timeout", C.MPC_SIGN_MAX_TIMEOUT)),
            interval=int(mpc.get("interval", C.MPC_SIGN_POLL_INTERVAL)),
        ),
        resubmission=ResubmissionConfig.from_dict(conf.get("resubmission", {})),
        num_confirmations=int(
            env.get("NUM_CONFIRMATIONS", conf.get("confirmations", {}).get("count", C.DEFAULT_NUM_CONFIRMATIONS))
        ),
        private_key=env.get(key_var),
    )
