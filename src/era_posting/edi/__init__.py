"""X12 835 decoding: tokenizer, loop parsers and the ``decode`` entry point."""

from era_posting.edi.decoder import DecodeResult, decode
from era_posting.edi.segments import Delimiters, Segment, parse_amount, parse_edi_date

__all__ = ["DecodeResult", "Delimiters", "Segment", "decode", "parse_amount", "parse_edi_date"]
