# config/moderation.py
"""
Content moderation word list and detection patterns.

Words are stored as SHA-256 hex digests of their lower-case form so the list
itself carries no offensive text. Use ``flask moderation-hash WORD`` to
produce the digest for a new entry.
"""

import re

INAPPROPRIATE_WORD_HASHES = frozenset({
    '66a65afbf25fc4de9327e7b1d489fe0e6ad113fbba84980c89ad83c4cfaa5b04',
    '880e042d271f08cd3c456f28704702a6b0ad1c7b442f257bf40578112c8e6ffb',
    'd33baa929783b936ad01ba7adc831e73012faae87c7a49c19ab99a07215a684a',
    '31b9f930565a8cd9d9de469fdd3bf7dbb09c018bfaeaac7b0aeca3bc6573a0b0',
    '85d5d67216de132c56012c77fc2c860d3e03802d893e5bdcca0926de7c3d2948',
    'a696a5198fa9694b29b1e3e0f71a2449c630f44c308e49d280f8f8fa36bb09e9',
    'adf42bd77215ec73ed7af069e64e6b8e082fd6c4f6ff2a4f3edbe4e7eb653744',
    'c2e7ff2790824b2b165d68e34a8f817796600ac3cb359a606f54e6e7d810d0bc',
    'e2cd332981d8c38286d4eedb34d20a7e7fdda9a3651d701e323b9527ce20bbf2',
    '2df80a7748013cc549c20f0dd9180990d5efeafe42b51c5aba4cb32d60ab6e3d',
    '99fff1612bfe76675b87c9cb33e4fbe961aa77d9572cbeaf081cf6b54e5a31c8',
    '7f9ed89c7297f99669b6e79d9d8d404d19f160ca40b40f42896506fa7942786b',
    'ea8c37a1a2db74130cb74d4666f23f55017158b5f82e919af9aea4a36d624072',
    'df31a65089fe25501f7245a9c84740addf66dad2097bdee68c58f446245f6ffb',
    'a428b1ee001b780bd328e7be107a068659f5e381b014e4c281c7ff850a37c9ae',
    'a1f8ef929b4c6e4526faa1ae1196d8afac8e0e3907e1b93a197336a011003441',
    'da6981a672e29bb01bff4e5f7b621c28019c02b3aa6293256efbbb2871f1a8b0',
    '992d80db945449b6264f363d14e83b14cafea3f0b7cd4f88873d6d3cdae71d6a',
    'f1e73b57b19ed869d47c7f5e4e1ead8b0bc54f1be7aab467a3ea5016235ec206',
    '96bd12bcf422c01d5dd76d8705364c708b665e5f9b0d0fc32b9fcfa70dbdd35a',
    'cb565c2cde4119d6e6f95d47d8207a70cf877f52c9dbbc0591eca8b97c492183',
    '5395755389fa81434c55f5ba656ed93cce999c8b2357b50e5a3fc0624a9562cc',
    '69a3f3b8343f4e32a3f967f643513b22a69d0ee7db5b14a8dcc0191385604ed8',
    '59df8bc4aba171ca0e4fa89d1c549377630e7a01758ac0939285979cafc6a102',
    '8eacea63f54f8901e2e66acca9b28d2d28c517b6e3a125448c1a458bfe122cab',
    '0e73ac79637de6466209cfadf4ee7e46979e485c7c33ba651d4108f47b3c59e3',
    'b965362ecfd18c83119e05446407bd704ed8df2e224e2960d9fcd2133bee6169',
    'b914f332d6430616851c860653591e3aa02380479323d0a1d97b0185bb6ed012',
    '06e0bd5e046ec3828806f3087ec92260b2af1d435ce7962bb98ddbfb4496d809',
    'cbeb0102202435f4c80d0ce7c5fb54070a2ab0a7e98f0fc57efd4005561a20c0',
    '616f9cfcc87d71381a1e595bd8f3bf6f741f23d72a8d24ca5bf607482e836350',
    '6ea044c786f237c955b497b04b9247f2a663c5038e54175e62308c8b8457e23e',
    '7a569fb8d75d5e2957473dea4589111a243254018b11b9a59c1ae7297478e270',
    '6ac3c336e4094835293a3fed8a4b5fedde1b5e2626d9838fed50693bba00af0e',
    '85fc17f7069acd39a5c636cd0a6530651096128da447959f5e250824857dc559',
    'd75a838dc758ba17f28bd8dbac605cb70c35465263d5733164521de2f7ef7926',
    'f50c51ed2315dcf3fa88181cf033f8029cac64f7dea4048327ca032ec102ea74',
    'e512a05583448f44790783f986b1f36925c8cfc42338ca0e1caa637755bd15ae',
})

# Leetspeak substitutions folded back to letters before hashing
CHARACTER_SUBSTITUTIONS = {
    '4': 'a', '@': 'a',
    '3': 'e',
    '1': 'i', '!': 'i',
    '0': 'o',
    '5': 's', '$': 's',
    '7': 't',
}

MODERATION_PATTERNS = {
    'excessive_repetition': re.compile(r'(.)\1{3,}'),
    'consonant_clustering': re.compile(r'[bcdfghjklmnpqrstvwxyz]{4,}', re.IGNORECASE),
    'case_alternation': re.compile(r'[a-z][A-Z][a-z][A-Z]|[A-Z][a-z][A-Z][a-z]'),
}


class SeverityLevel:
    MEDIUM = 'medium'
    HIGH = 'high'


class ModerationContext:
    REVIEW = 'review'
    GENERAL = 'general'
