#!/usr/bin/env python3
# *-* coding: utf-8 *-*
import sys

from docsign import SigningEngine

# import logging
# logging.basicConfig(level=logging.DEBUG)


def main():
    # certificate, passphrase and timestamp authorities come from the
    # NEXT_PRIVATE_SIGNING_* environment, see README.rst
    engine = SigningEngine.from_env()
    fname = "blank.pdf"
    if len(sys.argv) > 1:
        fname = sys.argv[1]
    datau = open(fname, "rb").read()
    result = engine.sign(
        datau,
        reason="Dokument podpisany cyfrowo",
        location="Szczecin",
        contact="demo@docsign.test",
    )
    print("signed at", result.signed_at, "timestamped:", result.timestamped)
    fname = fname.replace(".pdf", "-signed.pdf")
    with open(fname, "wb") as fp:
        fp.write(result.data)


main()
