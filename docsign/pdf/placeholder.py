# *-* coding: utf-8 *-*
"""
Signature placeholder insertion.

The document is never rewritten: a signature dictionary, an invisible
signature widget and the updated form, page and catalog objects are
appended as an incremental update. ``/Contents`` is reserved as a run of
hex zeros and ``/ByteRange`` brackets everything except that run.
"""
import hashlib
import io
import logging
import re
import struct
from datetime import datetime, timezone

import attr
from cryptography.hazmat.primitives import serialization
from pypdf import PdfReader, generic as po
from pypdf.errors import PdfReadError

from docsign.errors import InvalidPdfStructure, PlaceholderTooLarge

logger = logging.getLogger(__name__)

# PDF implementation limit for a string object (Annex C of ISO 32000-1);
# the hex /Contents string holds two digits per signature byte.
MAX_SIGNATURE_LENGTH = 32767

# DER framing of SignedData and SignerInfo, the signer identifier, the four
# signed attributes and a signature value of up to 4096-bit RSA.
CMS_OVERHEAD = 2048

# A token carries its own SignedData with the authority's certificate chain,
# commonly two or three certificates.
TIMESTAMP_TOKEN_OVERHEAD = 8192

BYTE_RANGE_PLACEHOLDER = b"[0 ********** ********** **********]"

DEFAULT_FIELD_NAME = "Signature1"

SIG_FLAGS = 3  # SignaturesExist | AppendOnly
ANNOTATION_FLAGS = 132  # Print | Locked

_STARTXREF = re.compile(rb"startxref\s+(\d+)")


class UnencryptedBytes(po.ByteStringObject):
    def write_to_stream(self, stream, encryption_key=None):
        stream.write(b"<")
        stream.write(self)
        stream.write(b">")


class LiteralBytes(po.ByteStringObject):
    def write_to_stream(self, stream, encryption_key=None):
        stream.write(b"(")
        stream.write(
            bytes(self).replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")
        )
        stream.write(b")")


class ByteRangeMarker(po.PdfObject):
    def write_to_stream(self, stream, encryption_key=None):
        stream.write(BYTE_RANGE_PLACEHOLDER)


@attr.s(frozen=True)
class Placeholder(object):
    """
    A document with a reserved, still empty signature.

    ``byte_range`` is ``(0, contents_start, contents_end, tail_length)``;
    ``contents_start`` is the offset of ``<`` and ``contents_end`` the offset
    just past ``>``.
    """

    data = attr.ib(repr=False)
    byte_range = attr.ib()
    field_name = attr.ib(default=DEFAULT_FIELD_NAME)

    @property
    def capacity(self):
        return (self.byte_range[2] - self.byte_range[1] - 2) // 2

    def signed_data(self):
        _, br1, br2, br3 = self.byte_range
        return self.data[0:br1] + self.data[br2 : br2 + br3]


def estimate_signature_length(certificates, timestamped):
    """
    Upper bound for the DER size of the CMS structure.

    :param certificates: signing certificate and its chain
        (cryptography.x509.Certificate)
    :param timestamped: whether a timestamp token will be embedded
    """
    length = CMS_OVERHEAD
    for cert in certificates:
        length += len(cert.public_bytes(serialization.Encoding.DER))
    if timestamped:
        length += TIMESTAMP_TOKEN_OVERHEAD
    return length


def pdf_date(value):
    value = value.astimezone(timezone.utc)
    return value.strftime("D:%Y%m%d%H%M%S+00'00'")


def find_startxref(pdf):
    tail = pdf[-2048:]
    matches = list(_STARTXREF.finditer(tail))
    if not matches:
        raise InvalidPdfStructure("startxref not found")
    return int(matches[-1].group(1))


def _unique_name(name, existing):
    if name not in existing:
        return name
    n = 1
    while "%s_%d" % (name, n) in existing:
        n += 1
    return "%s_%d" % (name, n)


def _field_names(fields):
    names = set()
    for field in fields:
        field = field.get_object()
        if "/T" in field:
            names.add(str(field["/T"]))
    return names


class IncrementalUpdate(object):
    """
    Collects new and modified objects of one update and serializes them
    after the original bytes.
    """

    def __init__(self, reader, pdf):
        self.reader = reader
        self.pdf = pdf
        self.prev = find_startxref(pdf)
        self.xref_stream = pdf[self.prev : self.prev + 4] != b"xref"
        self.next_number = int(reader.trailer["/Size"])
        self.objects = {}

    def add(self, obj):
        ref = po.IndirectObject(self.next_number, 0, self.reader)
        self.objects[self.next_number] = (0, obj)
        self.next_number += 1
        return ref

    def update(self, ref, obj):
        self.objects[ref.idnum] = (ref.generation, obj)

    def trailer(self, size):
        ids = self.reader.trailer["/ID"] if "/ID" in self.reader.trailer else None
        seed = hashlib.md5(self.pdf).digest()
        changed = po.ByteStringObject(
            hashlib.md5(seed + b"%d" % len(self.objects)).digest()
        )
        if ids is not None and len(ids) == 2:
            fileid = po.ArrayObject([ids[0], changed])
        else:
            fileid = po.ArrayObject([po.ByteStringObject(seed), changed])
        trailer = po.DictionaryObject(
            {
                po.NameObject("/Size"): po.NumberObject(size),
                po.NameObject("/Root"): self.reader.trailer.raw_get("/Root"),
                po.NameObject("/Prev"): po.NumberObject(self.prev),
                po.NameObject("/ID"): fileid,
            }
        )
        if "/Info" in self.reader.trailer:
            trailer[po.NameObject("/Info")] = self.reader.trailer.raw_get("/Info")
        return trailer

    def write(self, stream):
        stream.write(self.pdf)
        if not self.pdf.endswith((b"\n", b"\r")):
            stream.write(b"\n")
        positions = {}
        for idnum in sorted(self.objects):
            generation, obj = self.objects[idnum]
            positions[idnum] = (stream.tell(), generation)
            stream.write(b"%d %d obj\n" % (idnum, generation))
            obj.write_to_stream(stream)
            stream.write(b"\nendobj\n")

        xref_location = stream.tell()
        if not self.xref_stream:
            self._write_xref_table(stream, positions)
        else:
            self._write_xref_stream(stream, positions, xref_location)
        stream.write(b"\nstartxref\n%d\n%%%%EOF\n" % xref_location)

    @staticmethod
    def _sections(numbers):
        sections = []
        for idnum in numbers:
            if sections and sections[-1][-1] + 1 == idnum:
                sections[-1].append(idnum)
            else:
                sections.append([idnum])
        return sections

    def _write_xref_table(self, stream, positions):
        stream.write(b"xref\n")
        stream.write(b"0 1\n")
        stream.write(b"%010d %05d f \n" % (0, 65535))
        for section in self._sections(sorted(positions)):
            stream.write(b"%d %d\n" % (section[0], len(section)))
            for idnum in section:
                stream.write(b"%010d %05d n \n" % positions[idnum])
        stream.write(b"trailer\n")
        self.trailer(self.next_number).write_to_stream(stream)

    def _write_xref_stream(self, stream, positions, xref_location):
        xref_number = self.next_number
        positions[xref_number] = (xref_location, 0)
        index = po.ArrayObject()
        rows = []
        for section in self._sections(sorted(positions)):
            index.extend([po.NumberObject(section[0]), po.NumberObject(len(section))])
            for idnum in section:
                offset, generation = positions[idnum]
                rows.append(struct.pack(">BQH", 1, offset, generation))
        data = b"".join(rows)
        trailer = self.trailer(xref_number + 1)
        trailer.update(
            {
                po.NameObject("/Type"): po.NameObject("/XRef"),
                po.NameObject("/W"): po.ArrayObject(
                    [po.NumberObject(1), po.NumberObject(8), po.NumberObject(2)]
                ),
                po.NameObject("/Index"): index,
                po.NameObject("/Length"): po.NumberObject(len(data)),
            }
        )
        stream.write(b"%d 0 obj\n" % xref_number)
        trailer.write_to_stream(stream)
        stream.write(b"\nstream\n")
        stream.write(data)
        stream.write(b"\nendstream\nendobj")


def _open(pdf):
    if b"%PDF-" not in pdf[:1024]:
        raise InvalidPdfStructure("missing %PDF- header")
    try:
        reader = PdfReader(io.BytesIO(pdf), strict=False)
        if reader.is_encrypted:
            raise InvalidPdfStructure("encrypted documents cannot be signed")
        if "/Root" not in reader.trailer:
            raise InvalidPdfStructure("trailer has no /Root")
        if len(reader.pages) == 0:
            raise InvalidPdfStructure("document has no pages")
    except (PdfReadError, ValueError, KeyError, TypeError, IndexError, AttributeError) as exc:
        raise InvalidPdfStructure("cannot parse document: %s" % exc) from exc
    return reader


def _signature_form(update, catalog_ref, catalog):
    """the AcroForm dictionary to extend and its /Fields array"""
    formref = catalog.raw_get("/AcroForm") if "/AcroForm" in catalog else None
    if isinstance(formref, po.IndirectObject):
        form = formref.get_object()
        update.update(formref, form)
    elif formref is not None:
        form = formref
        update.update(catalog_ref, catalog)
    else:
        form = po.DictionaryObject()
        catalog[po.NameObject("/AcroForm")] = update.add(form)
        update.update(catalog_ref, catalog)

    fieldsref = form.raw_get("/Fields") if "/Fields" in form else None
    if isinstance(fieldsref, po.IndirectObject):
        fields = fieldsref.get_object()
        update.update(fieldsref, fields)
    elif fieldsref is not None:
        fields = fieldsref
    else:
        fields = po.ArrayObject()
        form[po.NameObject("/Fields")] = fields
    flags = int(form["/SigFlags"]) if "/SigFlags" in form else 0
    form[po.NameObject("/SigFlags")] = po.NumberObject(flags | SIG_FLAGS)
    return form, fields


def _add_annotation(update, page_ref, page, annotref):
    annots = page.raw_get("/Annots") if "/Annots" in page else None
    if isinstance(annots, po.IndirectObject):
        array = annots.get_object()
        array.append(annotref)
        update.update(annots, array)
        return
    if annots is None:
        annots = po.ArrayObject()
        page[po.NameObject("/Annots")] = annots
    annots.append(annotref)
    update.update(page_ref, page)


def reserve_signature_space(
    pdf,
    signature_length,
    *,
    field_name=DEFAULT_FIELD_NAME,
    reason=None,
    location=None,
    contact=None,
    signing_time=None,
):
    """
    Append an empty signature to ``pdf``.

    :param pdf: original document bytes, left untouched
    :param signature_length: bytes reserved for the DER encoded CMS structure
    :return: Placeholder
    :raises ValueError: non-positive ``signature_length``
    :raises PlaceholderTooLarge: ``signature_length`` above MAX_SIGNATURE_LENGTH
    :raises InvalidPdfStructure: the document cannot be parsed or updated
    """
    if signature_length <= 0:
        raise ValueError("signature length must be positive, got %r" % signature_length)
    if signature_length > MAX_SIGNATURE_LENGTH:
        raise PlaceholderTooLarge(
            "%d bytes requested, at most %d fit into /Contents"
            % (signature_length, MAX_SIGNATURE_LENGTH)
        )
    if signing_time is None:
        signing_time = datetime.now(tz=timezone.utc)
    pdf = bytes(pdf)
    reader = _open(pdf)
    zeros = b"0" * (2 * signature_length)

    try:
        update = IncrementalUpdate(reader, pdf)
        catalog_ref = reader.trailer.raw_get("/Root")
        catalog = catalog_ref.get_object()
        page_ref = reader.pages[0].indirect_reference
        page = page_ref.get_object()

        form, fields = _signature_form(update, catalog_ref, catalog)
        field_name = _unique_name(field_name, _field_names(fields))

        sig = po.DictionaryObject(
            {
                po.NameObject("/Type"): po.NameObject("/Sig"),
                po.NameObject("/Filter"): po.NameObject("/Adobe.PPKLite"),
                po.NameObject("/SubFilter"): po.NameObject("/adbe.pkcs7.detached"),
                po.NameObject("/M"): LiteralBytes(pdf_date(signing_time).encode("ascii")),
                po.NameObject("/ByteRange"): ByteRangeMarker(),
                po.NameObject("/Contents"): UnencryptedBytes(zeros),
            }
        )
        for key, value in (
            ("/Reason", reason),
            ("/Location", location),
            ("/ContactInfo", contact),
        ):
            if value:
                sig[po.NameObject(key)] = po.create_string_object(value)
        sigref = update.add(sig)

        annot = po.DictionaryObject(
            {
                po.NameObject("/FT"): po.NameObject("/Sig"),
                po.NameObject("/Type"): po.NameObject("/Annot"),
                po.NameObject("/Subtype"): po.NameObject("/Widget"),
                po.NameObject("/F"): po.NumberObject(ANNOTATION_FLAGS),
                po.NameObject("/T"): po.TextStringObject(field_name),
                po.NameObject("/V"): sigref,
                po.NameObject("/P"): page_ref,
                po.NameObject("/Rect"): po.ArrayObject(
                    [
                        po.FloatObject(0.0),
                        po.FloatObject(0.0),
                        po.FloatObject(0.0),
                        po.FloatObject(0.0),
                    ]
                ),
            }
        )
        annotref = update.add(annot)
        fields.append(annotref)
        _add_annotation(update, page_ref, page, annotref)

        fo = io.BytesIO()
        update.write(fo)
    except (PdfReadError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise InvalidPdfStructure("cannot update document: %s" % exc) from exc
    datas = fo.getvalue()

    # everything past the original bytes is ours, so both markers are unique there
    pdfbr1 = datas.find(b"<" + zeros + b">", len(pdf))
    pdfbr2 = pdfbr1 + len(zeros) + 2
    br = (0, pdfbr1, pdfbr2, len(datas) - pdfbr2)
    bfrom = datas.find(BYTE_RANGE_PLACEHOLDER, len(pdf))
    bto = b"[%d %d %d %d]" % br
    if len(bto) > len(BYTE_RANGE_PLACEHOLDER):
        raise PlaceholderTooLarge("document too large for a /ByteRange entry")
    bto += b" " * (len(BYTE_RANGE_PLACEHOLDER) - len(bto))
    datas = datas[:bfrom] + bto + datas[bfrom + len(bto) :]

    logger.debug(
        "reserved %d bytes for field %s, byte range %s", signature_length, field_name, br
    )
    return Placeholder(datas, br, field_name)
