"""Secret detection rules.

Rules are applied in order. Trusted rules target provider-specific key
formats that are distinctive enough to be reported even from minified
bundles; the generic assignment rules are only reported from readable code.
"""

import re
from typing import NamedTuple


class SecretRule(NamedTuple):
    """A named secret pattern with its metadata."""

    name: str
    severity: str
    trusted: bool
    description: str
    regex: re.Pattern


# Characters allowed in a quoted key or token value.
_VALUE = r"[a-zA-Z0-9_\-\.]{10,}"

SECRET_RULES: list[SecretRule] = [
    SecretRule(
        name="API Key",
        severity="critical",
        trusted=False,
        description="Value assigned to an api_key / access_token style variable",
        regex=re.compile(
            r"['\"]?(?:api[_-]?key|apikey|api_token|access[_-]?key|access[_-]?token)['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="AWS Key",
        severity="critical",
        trusted=True,
        description="AWS access key id",
        regex=re.compile(r"['\"]?((?:AKIA|ASIA)[A-Z0-9]{16})['\"]?"),
    ),
    SecretRule(
        name="Azure Key",
        severity="critical",
        trusted=False,
        description="Azure storage account key or connection string",
        regex=re.compile(
            r"['\"]?(?:key|primarykey|secondarykey|accountkey|accesskey)['\"]?\s*[:=]\s*['\"]([a-zA-Z0-9+/=]{44,})['\"]"
            r"|DefaultEndpointsProtocol=https;AccountName=[^;]{1,100};AccountKey=([a-zA-Z0-9+/=]{88})",
            re.IGNORECASE,
        ),
    ),
    SecretRule(
        name="Firebase Key",
        severity="high",
        trusted=True,
        description="Firebase / Google browser API key",
        regex=re.compile(r"['\"]?(AIza[0-9A-Za-z_\-]{30,39})['\"]?"),
    ),
    SecretRule(
        name="Google API",
        severity="high",
        trusted=True,
        description="Google API key",
        regex=re.compile(r"['\"]?(AIza[0-9A-Za-z_\-]{30,39})['\"]?"),
    ),
    SecretRule(
        name="Stripe Key",
        severity="critical",
        trusted=True,
        description="Stripe live secret, publishable or restricted key",
        regex=re.compile(r"['\"]?((?:sk_live_|pk_live_|rk_live_)[a-zA-Z0-9]{24,})['\"]?"),
    ),
    SecretRule(
        name="Supabase Key",
        severity="high",
        trusted=True,
        description="Supabase service or management key",
        regex=re.compile(r"['\"]?((?:eyJ|sbp_)[a-zA-Z0-9._\-]{40,})['\"]?"),
    ),
    SecretRule(
        name="GitHub Token",
        severity="critical",
        trusted=True,
        description="GitHub personal, OAuth, user, server or refresh token",
        regex=re.compile(r"['\"]?((?:ghp_|gho_|ghu_|ghs_|ghr_)[a-zA-Z0-9]{36,})['\"]?"),
    ),
    SecretRule(
        name="Replicate Token",
        severity="critical",
        trusted=True,
        description="Replicate API token",
        regex=re.compile(r"['\"]?(r8_[a-zA-Z0-9]{20,})['\"]?"),
    ),
    SecretRule(
        name="Authentication Token",
        severity="medium",
        trusted=False,
        description="Value assigned to a token / secret / password variable",
        regex=re.compile(
            r"['\"]?(?:token|auth[_-]?token|secret|key|password|credential)['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="Bearer Token",
        severity="high",
        trusted=True,
        description="Hard-coded bearer token in an Authorization header",
        regex=re.compile(
            r"[`'\"]?bearer\s+(" + _VALUE + r")[`'\"]?"
            r"|authorization['\"]?\s*[:=]\s*[`'\"]bearer\s+(" + _VALUE + r")[`'\"]"
            r"|['\"]\s*Authorization['\"]\s*:\s*[`'\"]\s*Bearer\s+[\$\{]?[a-zA-Z0-9_]+\}?[`'\"]",
            re.IGNORECASE,
        ),
    ),
    SecretRule(
        name="API Key in URL",
        severity="critical",
        trusted=False,
        description="Key or token passed in a URL query string",
        regex=re.compile(
            r"https?://[^\"'\s]{1,300}[\?&](?:key|apikey|api_key|access_token|token)=(" + _VALUE + r")(?:['\"&]|$)",
            re.MULTILINE,
        ),
    ),
    SecretRule(
        name="Firebase Config",
        severity="medium",
        trusted=False,
        description="apiKey inside a Firebase configuration block",
        regex=re.compile(
            r"apiKey['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
            r"(?:(?!apiKey)[\s\S]){0,300}?(?:authDomain|databaseURL|projectId)",
            re.IGNORECASE,
        ),
    ),
    SecretRule(
        name="Config with API Key",
        severity="critical",
        trusted=False,
        description="Key or secret inside a config / options / credentials object",
        regex=re.compile(
            r"['\"]?(?:config|options|settings|credentials)[\w ]{0,40}?[=:][^=:]{0,200}?"
            r"['\"]?(?:key|token|secret|password|apiKey)['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="API Key in Console Log",
        severity="critical",
        trusted=False,
        description="Key or token written to the browser console",
        regex=re.compile(
            r"console\.log\(\s*[^)]{0,200}?(?:['\"]?api[_-]?key['\"]?|['\"]?apikey['\"]?|['\"]?token['\"]?|['\"]?secret['\"]?)"
            r"[^)]{0,200}?['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="Database Config",
        severity="medium",
        trusted=False,
        description="apiKey inside a dbConfig / databaseSettings object",
        regex=re.compile(
            r"(?:db|database)(?:Config|Settings|Options).{0,200}?['\"]?apiKey['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="Object with API Key",
        severity="critical",
        trusted=False,
        description="Object literal with an apiKey property",
        regex=re.compile(
            r"[^\w](?:const|let|var)\s+\w+\s*=\s*\{[\s\S]{0,100}?['\"]?apiKey['\"]?\s*[:=]\s*['\"](" + _VALUE + r")['\"]"
        ),
    ),
    SecretRule(
        name="Private Key",
        severity="critical",
        trusted=True,
        description="PEM private key material",
        regex=re.compile(r"-----BEGIN\s+(?:PRIVATE|RSA PRIVATE|DSA PRIVATE|EC PRIVATE|OPENSSH PRIVATE)\s+KEY-----"),
    ),
    SecretRule(
        name="JWT Token",
        severity="high",
        trusted=True,
        description="Signed JSON Web Token",
        regex=re.compile(r"['\"]?(eyJ[a-zA-Z0-9_\-]{10,}\.eyJ[a-zA-Z0-9_\-]{10,}\.[a-zA-Z0-9_\-]{10,})['\"]?"),
    ),
]

TRUSTED_RULES = frozenset(rule.name for rule in SECRET_RULES if rule.trusted)

# Firebase web configuration object: `const firebaseConfig = { apiKey: "...", authDomain: ... }`.
FIREBASE_CONFIG_PATTERN = re.compile(
    r"(?:const|let|var)\s+(\w+)\s*=\s*\{[\s\S]{0,50}?apiKey\s*:\s*[\"'](" + _VALUE + r")[\"'][\s\S]{0,200}?"
    r"(?:authDomain|databaseURL|projectId)"
)


def get_rule(name: str) -> SecretRule:
    """Look up a rule by name."""
    for rule in SECRET_RULES:
        if rule.name == name:
            return rule
    raise KeyError(name)
