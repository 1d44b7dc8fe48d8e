"""
Signer Adapter Factory.

============================================================
USAGE
============================================================
```python
signer = create_signer("simulated")

config = SmartExecutionConfig.from_env()
signer = create_signer(config.signer_mode, config)
```

============================================================
"""

import logging
from typing import Optional

from ..config import (
    SIGNER_MODE_RELAYER,
    SIGNER_MODE_SIMULATED,
    SmartExecutionConfig,
)
from .base import SignerAdapter
from .relayer import HttpRelayerSigner
from .simulated import SimulatedSigner, SimulatedSignerConfig


logger = logging.getLogger(__name__)


SUPPORTED_MODES = (SIGNER_MODE_SIMULATED, SIGNER_MODE_RELAYER)


def create_signer(
    mode: str,
    config: Optional[SmartExecutionConfig] = None,
) -> SignerAdapter:
    """
    Create a signer adapter.

    Args:
        mode: "simulated" or "relayer"
        config: Master configuration

    Raises:
        ValueError: If mode is not supported
    """
    config = config or SmartExecutionConfig()
    mode = (mode or "").lower()

    if mode == SIGNER_MODE_SIMULATED:
        signer: SignerAdapter = SimulatedSigner(SimulatedSignerConfig())
    elif mode == SIGNER_MODE_RELAYER:
        signer = HttpRelayerSigner(config.relayer)
    else:
        raise ValueError(
            f"Unsupported signer mode: {mode!r}. "
            f"Supported: {', '.join(SUPPORTED_MODES)}"
        )

    logger.info(f"Created {signer.signer_id} signer")
    return signer
