from .account_store import Account, AccountStore, AccountStoreError, AccountSummary
from .credential_vault import CredentialVault, CredentialVaultError
from .gitea_auth import GiteaAccountService, NotSignedInError, account_id_for
from .gitea_client import (
    CreateBranchInput,
    CreateRepoInput,
    GiteaApiError,
    GiteaClient,
    GiteaClientError,
    GiteaOwner,
    GiteaRepo,
    GiteaResponseError,
    RepoOpenCounts,
    normalize_gitea_base_url,
    redact_url,
)
from .gitea_oauth import (
    BrowserSurface,
    OAuthCallbackServer,
    OAuthError,
    OAuthFlowState,
    OAuthPkceAuthenticator,
)

__all__ = [
    "Account",
    "AccountStore",
    "AccountStoreError",
    "AccountSummary",
    "CredentialVault",
    "CredentialVaultError",
    "GiteaAccountService",
    "NotSignedInError",
    "account_id_for",
    "CreateBranchInput",
    "CreateRepoInput",
    "GiteaApiError",
    "GiteaClient",
    "GiteaClientError",
    "GiteaOwner",
    "GiteaRepo",
    "GiteaResponseError",
    "RepoOpenCounts",
    "normalize_gitea_base_url",
    "redact_url",
    "BrowserSurface",
    "OAuthCallbackServer",
    "OAuthError",
    "OAuthFlowState",
    "OAuthPkceAuthenticator",
]
