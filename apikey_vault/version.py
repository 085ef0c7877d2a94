"""APIKey Vault Meta information.
   APIKey Vault stores AI provider API keys encrypted at rest,
   unlocked on demand with a user password.
"""
__title__ = 'apikey_vault'
__description__ = (
   'APIKey Vault stores AI provider API keys encrypted at rest '
   'and unlocks them per session with a user password.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/apikey-vault'
