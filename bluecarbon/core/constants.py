"""
Ledger constants shared by hashing, block building and verification.
"""

# previous_hash of the genesis block (index 0)
GENESIS_PREVIOUS_HASH = "0000000000000000"

# Party identifier used as the sender of minted credits
SYSTEM_PARTY = "system"

# Separator for canonical serialisations fed to sha256
HASH_FIELD_SEPARATOR = "|"

# Separator between block hash and approver identity in validator tags
VALIDATOR_TAG_SEPARATOR = ":"
