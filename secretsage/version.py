"""SecretSage Meta information.
   SecretSage keeps credentials encrypted at rest and grants them
   on demand into a project .env file.
"""
__title__ = 'secretsage'
__description__ = (
   'Local secrets vault: encrypted credentials granted to '
   'and revoked from .env files.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 SecretSage Contributors'
__author__ = 'SecretSage Contributors'
__license__ = 'Apache-2.0'
