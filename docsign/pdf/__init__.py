# *-* coding: utf-8 *-*
from . import cms, placeholder
from .verify import verify
