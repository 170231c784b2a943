#!/usr/bin/env python3
# *-* coding: utf-8 *-*
import sys

from docsign import pdf


def main():
    trusted_cert_pems = []
    for fname in sys.argv[2:]:
        trusted_cert_pems.append(open(fname, "rb").read())
    data = open(sys.argv[1], "rb").read()
    for no, (hashok, signatureok, certok) in enumerate(
        pdf.verify(data, trusted_cert_pems)
    ):
        print("*" * 10, "signature no:", no)
        print("signature ok?", signatureok)
        print("hash ok?", hashok)
        print("cert ok?", certok)


main()
