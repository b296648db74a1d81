"""
Service container.

Every service is constructed once, at startup, from Settings and attached
to app.state.container. Handlers reach services through the get_container
dependency; nothing is a module-level singleton.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from core.authorizer import AuthorizationRules
from core.cache import JsonCache
from core.config import Settings
from core.database import create_db_engine
from core.token_validator import FirebaseTokenVerifier, JwtTokenVerifier, TokenVerifier
from services.content_generation import ContentGenerationClient
from services.document_store import DocumentStore, InMemoryDocumentStore
from services.dynamic_analytics import DynamicAnalyticsService
from services.firestore_store import FirestoreDocumentStore
from services.form_entries import FormEntryService
from services.form_templates import FormTemplateService
from services.identity_provider import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from services.role_admin import RoleAdminService
from services.sql_store import SqlDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    verifier: TokenVerifier
    identity_provider: IdentityProvider
    rules: AuthorizationRules
    store: DocumentStore
    cache: JsonCache
    templates: FormTemplateService
    entries: FormEntryService
    analytics: DynamicAnalyticsService
    roles: RoleAdminService
    content: ContentGenerationClient
    idempotency_ttl: int = 24 * 3600


def build_verifier(app_settings: Settings) -> TokenVerifier:
    if app_settings.AUTH_PROVIDER == "jwt":
        return JwtTokenVerifier(app_settings.SECRET_KEY, app_settings.REQUIRE_VERIFIED_EMAIL)
    if app_settings.AUTH_PROVIDER == "firebase":
        return FirebaseTokenVerifier(
            credentials_path=app_settings.FIREBASE_CREDENTIALS_PATH,
            project_id=app_settings.FIREBASE_PROJECT_ID,
            require_verified_email=app_settings.REQUIRE_VERIFIED_EMAIL,
            clock_skew_retries=app_settings.TOKEN_CLOCK_SKEW_RETRIES,
        )
    raise ValueError(f"Unknown AUTH_PROVIDER: {app_settings.AUTH_PROVIDER}")


def build_store(app_settings: Settings) -> DocumentStore:
    backend = app_settings.STORE_BACKEND
    if backend == "memory":
        return InMemoryDocumentStore(batch_limit=app_settings.STORE_BATCH_LIMIT)
    if backend == "sql":
        engine = create_db_engine(
            app_settings.DATABASE_URL,
            pool_size=app_settings.DB_POOL_SIZE,
            max_overflow=app_settings.DB_MAX_OVERFLOW,
            pool_timeout=app_settings.DB_POOL_TIMEOUT,
            pool_recycle=app_settings.DB_POOL_RECYCLE,
            echo=app_settings.DEBUG,
        )
        return SqlDocumentStore(engine, batch_limit=app_settings.STORE_BATCH_LIMIT)
    if backend == "firestore":
        return FirestoreDocumentStore(
            credentials_path=app_settings.FIREBASE_CREDENTIALS_PATH,
            project_id=app_settings.FIREBASE_PROJECT_ID,
            batch_limit=app_settings.STORE_BATCH_LIMIT,
            retry_attempts=app_settings.EXTERNAL_API_RETRY_ATTEMPTS,
            retry_base_delay=app_settings.EXTERNAL_API_RETRY_BASE_DELAY_S,
        )
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def build_container(
    app_settings: Settings,
    store: Optional[DocumentStore] = None,
    verifier: Optional[TokenVerifier] = None,
    identity_provider: Optional[IdentityProvider] = None,
    cache: Optional[JsonCache] = None,
    content: Optional[ContentGenerationClient] = None,
) -> ServiceContainer:
    """Wire services from settings; any collaborator can be substituted."""
    verifier = verifier or build_verifier(app_settings)
    if identity_provider is None:
        if app_settings.AUTH_PROVIDER == "firebase":
            identity_provider = FirebaseIdentityProvider(
                verifier, app_settings.FIREBASE_CREDENTIALS_PATH, app_settings.FIREBASE_PROJECT_ID
            )
        else:
            identity_provider = InMemoryIdentityProvider(verifier)
    store = store or build_store(app_settings)
    cache = cache or JsonCache(app_settings.REDIS_URL, default_ttl=app_settings.CACHE_TTL_DEFAULT)

    rules = AuthorizationRules(
        admin_prefix=app_settings.ADMIN_NAMESPACE_PREFIX,
        protected_prefix=app_settings.PROTECTED_NAMESPACE_PREFIX,
        self_authenticated_paths=frozenset(app_settings.self_authenticated_paths),
    )
    templates = FormTemplateService(store, cache=cache, cache_ttl=app_settings.CACHE_TTL_TEMPLATES)
    entries = FormEntryService(store, templates)

    logger.info(
        f"Services wired (auth={app_settings.AUTH_PROVIDER}, store={app_settings.STORE_BACKEND})"
    )
    return ServiceContainer(
        verifier=verifier,
        identity_provider=identity_provider,
        rules=rules,
        store=store,
        cache=cache,
        templates=templates,
        entries=entries,
        analytics=DynamicAnalyticsService(
            templates,
            entries,
            trend_window=app_settings.ANALYTICS_TREND_WINDOW,
            trend_threshold_percent=app_settings.ANALYTICS_TREND_THRESHOLD_PERCENT,
        ),
        roles=RoleAdminService(identity_provider, setup_secret=app_settings.ADMIN_SETUP_SECRET),
        content=content or ContentGenerationClient(
            app_settings.CONTENT_SERVICE_URL,
            api_key=app_settings.CONTENT_SERVICE_API_KEY,
            timeout=app_settings.EXTERNAL_API_TIMEOUT,
            retry_attempts=app_settings.EXTERNAL_API_RETRY_ATTEMPTS,
            retry_base_delay=app_settings.EXTERNAL_API_RETRY_BASE_DELAY_S,
        ),
        idempotency_ttl=app_settings.IDEMPOTENCY_TTL_S,
    )
