UNCLASSIFIED = "unclassified"

DEFAULT_THREAT_LABELS: tuple[str, ...] = (
    "benign",
    "credential_attack",
    "mfa_failure",
    "bot_or_rate_abuse",
    "waf_block",
    "admin_risk",
    "payment_fraud",
)
