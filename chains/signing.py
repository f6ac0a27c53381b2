"""
chains/signing.py - Validator signing determination strategies.

Two ways to tell whether the validator is signing:
- CommitSignatureSource: the validator's address is among the signers of
  the latest block's commit (authoritative)
- ValidatorSetSource: the validator is an active member of the current
  validator set (conservative proxy for endpoints without signer lists)

AutoSigningSource prefers commit signatures and falls back to validator
set membership when the endpoint's block carries no signer list.
"""

from typing import TYPE_CHECKING, Any, Protocol

from core.constants import (
    BLOCK_ID_FLAG_ABSENT,
    VALIDATORS_PER_PAGE,
    SigningSourceType,
)
from core.exceptions import MalformedResponseError
from core.logging import get_logger

if TYPE_CHECKING:
    from chains.providers import CometRPCClient, NodeStatus

logger = get_logger(__name__)

# Upper bound on validator set pages (100 per page)
MAX_VALIDATOR_PAGES = 20


class SignerListUnavailable(MalformedResponseError):
    """Block response has no commit signature list."""
    pass


class SigningSource(Protocol):
    """Decides whether the validator signed, given a node's status."""

    name: str

    async def is_signing(
        self,
        rpc: "CometRPCClient",
        url: str,
        status: "NodeStatus",
        validator_addr: str,
    ) -> bool:
        ...


def _block_id_flag_absent(flag: Any) -> bool:
    # Newer nodes encode the flag as an int, some proxies as the enum name
    if isinstance(flag, str):
        if flag.isdigit():
            return int(flag) == BLOCK_ID_FLAG_ABSENT
        return flag.upper().endswith("ABSENT")
    return flag == BLOCK_ID_FLAG_ABSENT


def commit_has_signature(signatures: list, validator_addr: str) -> bool:
    """
    Check a commit's signature list for the validator.

    Absent votes carry an empty address and an ABSENT flag; both commit
    and nil votes count as signing.
    """
    for sig in signatures:
        if not isinstance(sig, dict):
            raise MalformedResponseError(f"Unexpected signature entry: {sig!r}")
        address = sig.get("validator_address") or ""
        if not isinstance(address, str):
            raise MalformedResponseError(f"Unexpected validator_address: {address!r}")
        if address.upper() != validator_addr:
            continue
        if _block_id_flag_absent(sig.get("block_id_flag")):
            continue
        return True
    return False


class CommitSignatureSource:
    """Signing = validator address present in the latest block's last_commit."""

    name = SigningSourceType.COMMIT.value

    async def is_signing(self, rpc, url, status, validator_addr) -> bool:
        result = await rpc.get(url, "block", {"height": str(status.latest_height)})

        try:
            last_commit = result["block"]["last_commit"]
        except (KeyError, TypeError) as e:
            raise SignerListUnavailable(
                f"Block response has no last_commit: {e}",
                details={"height": status.latest_height},
            ) from e

        signatures = last_commit.get("signatures") if isinstance(last_commit, dict) else None
        if not isinstance(signatures, list) or not signatures:
            raise SignerListUnavailable(
                "Block last_commit has no signatures",
                details={"height": status.latest_height},
            )

        return commit_has_signature(signatures, validator_addr)


class ValidatorSetSource:
    """Signing = validator is a member of the active validator set."""

    name = SigningSourceType.VALIDATOR_SET.value

    async def is_signing(self, rpc, url, status, validator_addr) -> bool:
        addresses = await self.fetch_validator_addresses(rpc, url, status.latest_height)
        return validator_addr in addresses

    async def fetch_validator_addresses(self, rpc, url: str, height: int) -> set[str]:
        """Fetch every page of the validator set at a height."""
        addresses: set[str] = set()
        total = None

        for page in range(1, MAX_VALIDATOR_PAGES + 1):
            result = await rpc.get(url, "validators", {
                "height": str(height),
                "page": str(page),
                "per_page": str(VALIDATORS_PER_PAGE),
            })

            try:
                validators = result["validators"]
                total = int(result.get("total", len(validators)))
            except (KeyError, TypeError, ValueError) as e:
                raise MalformedResponseError(f"Bad validators response: {e}") from e

            if not isinstance(validators, list):
                raise MalformedResponseError("validators is not a list")

            for validator in validators:
                try:
                    addresses.add(validator["address"].upper())
                except (KeyError, TypeError, AttributeError) as e:
                    raise MalformedResponseError(f"Bad validator entry: {validator!r}") from e

            if not validators or len(addresses) >= total:
                break

        if total is None or len(addresses) != total:
            raise MalformedResponseError(
                "Validator set pagination does not add up",
                details={"reported_total": total, "collected": len(addresses)},
            )

        return addresses


class AutoSigningSource:
    """
    Commit signatures when the endpoint exposes them, otherwise
    validator set membership.
    """

    name = SigningSourceType.AUTO.value

    def __init__(self):
        self._commit = CommitSignatureSource()
        self._validator_set = ValidatorSetSource()

    async def is_signing(self, rpc, url, status, validator_addr) -> bool:
        try:
            return await self._commit.is_signing(rpc, url, status, validator_addr)
        except SignerListUnavailable as e:
            logger.debug(
                "No signer list, falling back to validator set",
                extra={"context": {"height": status.latest_height, "cause": e.message}},
            )
            return await self._validator_set.is_signing(rpc, url, status, validator_addr)


def build_signing_source(source_type: SigningSourceType) -> SigningSource:
    """Create the signing source for a configured type."""
    sources = {
        SigningSourceType.AUTO: AutoSigningSource,
        SigningSourceType.COMMIT: CommitSignatureSource,
        SigningSourceType.VALIDATOR_SET: ValidatorSetSource,
    }
    return sources[SigningSourceType(source_type)]()
