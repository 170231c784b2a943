# *-* coding: utf-8 *-*
__author__ = 'docsign developers'
__license__ = 'MIT'
__version__ = '1.0.0'

from docsign.errors import SigningError
from docsign.engine import SignatureResult, SigningEngine

__all__ = ['SigningEngine', 'SignatureResult', 'SigningError']
