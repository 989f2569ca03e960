"""Per-run compilation of stored OpenAPI action sets."""

import logging
from typing import Dict, List, Optional, Protocol

from toolgate.infra.config import config
from toolgate.infra.errors import ActionValidationError, RunCancelledError
from toolgate.infra.metrics import action_sets_compiled_total, action_sets_rejected_total
from toolgate.models.action import ActionMetadata, ActionSet, CompiledAction
from toolgate.models.run import RunContext
from toolgate.services import action_domain
from toolgate.services.openapi_actions import openapi_to_functions, validate_and_parse_openapi_spec

logger = logging.getLogger(__name__)


class ActionSetStore(Protocol):
    async def load_for_run(self, run: RunContext) -> List[ActionSet]:
        ...


class MetadataDecryptor(Protocol):
    async def decrypt(self, metadata: ActionMetadata) -> ActionMetadata:
        ...


class InMemoryActionSetStore:
    """Read-only action set store keyed by (owner scope, owner id)."""

    def __init__(self, action_sets: Optional[List[ActionSet]] = None):
        self._sets: List[ActionSet] = list(action_sets or [])

    def add(self, action_set: ActionSet) -> None:
        self._sets.append(action_set)

    async def load_for_run(self, run: RunContext) -> List[ActionSet]:
        if not run.owner_id:
            return []
        return [
            action_set for action_set in self._sets
            if action_set.owner_id == run.owner_id and action_set.owner_scope == run.owner_scope
        ]


class ActionSetCompiler:
    """
    Validates action sets and compiles their operations into request builders.

    Each action set is checked against the allow-list and its spec's server URL
    before anything is compiled; a failing set is excluded as a whole and the
    rest of the run continues. Decryption failures are fatal.
    """

    def __init__(self, store: ActionSetStore, decryptor: MetadataDecryptor):
        self.store = store
        self.decryptor = decryptor

    async def load_for_run(self, run: RunContext) -> Dict[str, CompiledAction]:
        """Compile the run's action sets once and cache the domain map on the run."""
        if run.compiled_actions is not None:
            return run.compiled_actions

        action_sets = await self.store.load_for_run(run) or []
        allowed_domains = run.allowed_domains if run.allowed_domains is not None else config.ACTIONS_ALLOWED_DOMAINS
        run.compiled_actions = await self.compile(action_sets, allowed_domains, run)
        return run.compiled_actions

    async def compile(
        self,
        action_sets: List[ActionSet],
        allowed_domains: Optional[List[str]],
        run: RunContext,
    ) -> Dict[str, CompiledAction]:
        """
        Build the canonical-domain -> CompiledAction map for a run.

        Args:
            action_sets: Stored action sets (encrypted metadata)
            allowed_domains: Operator allow-list, None for unrestricted
            run: Run context (cancellation, domain key store, log context)

        Returns:
            Domain map in compilation order

        Raises:
            RunCancelledError: If the run is cancelled mid-compilation
            MetadataDecryptionError: If an action set's secrets cannot be decrypted
        """
        domain_map: Dict[str, CompiledAction] = {}

        for action_set in action_sets:
            if run.is_cancelled:
                logger.info(f"Run cancelled during action compilation, {run.log_context()}")
                raise RunCancelledError("Run was cancelled while compiling action sets")

            compiled = await self._compile_one(action_set, allowed_domains, run)
            if compiled is None:
                continue

            if compiled.domain in domain_map:
                logger.warning(
                    f"Action set {action_set.action_id} replaces an earlier action set for domain "
                    f"'{action_set.metadata.domain}', {run.log_context()}"
                )
            domain_map[compiled.domain] = compiled
            action_sets_compiled_total.inc()

        return domain_map

    async def _compile_one(
        self,
        action_set: ActionSet,
        allowed_domains: Optional[List[str]],
        run: RunContext,
    ) -> Optional[CompiledAction]:
        metadata = action_set.metadata

        if not action_domain.is_action_domain_allowed(metadata.domain, allowed_domains):
            logger.warning(
                f"Action domain '{metadata.domain}' is not allowed, skipping action set "
                f"{action_set.action_id}, {run.log_context()}"
            )
            action_sets_rejected_total.labels(reason="domain_not_allowed").inc()
            return None

        parsed = validate_and_parse_openapi_spec(metadata.raw_spec)
        if not parsed.status:
            logger.warning(
                f"Invalid spec for action set {action_set.action_id}: {parsed.message}, {run.log_context()}"
            )
            action_sets_rejected_total.labels(reason="invalid_spec").inc()
            return None

        # Stored domain and the spec's server must agree before anything is compiled
        domain_check = action_domain.validate_action_domain(metadata.domain, parsed.server_url)
        if not domain_check.valid:
            logger.error(
                f"Domain mismatch in stored action: {domain_check.reason}",
                extra={
                    "user_id": run.user_id,
                    "run_id": run.run_id,
                    "owner_id": run.owner_id,
                    "action_id": action_set.action_id,
                },
            )
            action_sets_rejected_total.labels(reason="domain_mismatch").inc()
            return None

        try:
            signatures, builders = openapi_to_functions(parsed.spec, parsed.server_url)
        except ActionValidationError as e:
            logger.warning(
                f"Invalid spec for action set {action_set.action_id}: {e.message}, {run.log_context()}"
            )
            action_sets_rejected_total.labels(reason="invalid_spec").inc()
            return None

        domain = action_domain.encode_domain(metadata.domain, run.domain_keys)

        encrypted = {
            "oauth_client_id": metadata.oauth_client_id,
            "oauth_client_secret": metadata.oauth_client_secret,
        }
        decrypted = action_set.model_copy(update={"metadata": await self.decryptor.decrypt(metadata)})

        logger.debug(
            f"Compiled action set {action_set.action_id} ({action_set.owner_scope.value}) "
            f"with {len(builders)} operations for domain '{metadata.domain}'"
        )
        return CompiledAction(
            action=decrypted,
            domain=domain,
            request_builders=builders,
            function_signatures=signatures,
            validated_server_url=parsed.server_url,
            encrypted=encrypted,
        )
