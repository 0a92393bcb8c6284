# Created in August 2021
#
# Author: Azaria Zornberg
#
# Copyright 2021 - 2021 Azaria Zornberg
#
# This file is part of adauth
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

""" Decoding of the binary identity attributes that Active Directory returns on every object """
import struct
import uuid

# revision (1 byte), sub authority count (1 byte), identifier authority (6 bytes, big endian)
SID_HEADER_LENGTH = 8
SID_SUB_AUTHORITY_LENGTH = 4
GUID_LENGTH = 16


def decode_sid(data: bytes) -> str:
    """ Convert a binary security identifier into its canonical string form, e.g. S-1-5-21-1-2-3-500
    The layout is described in MS-DTYP 2.4.2:
    https://docs.microsoft.com/en-us/openspecs/windows_protocols/ms-dtyp/78eb9013-1c3a-4970-ad1f-2b1dad588a25

    The identifier authority is a 48 bit big endian number, while each sub authority is an unsigned
    32 bit little endian number. Relative IDs regularly exceed 2^31, so they must be read unsigned.
    """
    revision = data[0]
    sub_authority_count = data[1]
    authority = int.from_bytes(data[2:SID_HEADER_LENGTH], byteorder='big')
    sub_authorities_end = SID_HEADER_LENGTH + SID_SUB_AUTHORITY_LENGTH * sub_authority_count
    sub_authorities = struct.unpack('<{}L'.format(sub_authority_count),
                                    data[SID_HEADER_LENGTH:sub_authorities_end])
    pieces = ['S', str(revision), str(authority)]
    pieces.extend(str(sub_authority) for sub_authority in sub_authorities)
    return '-'.join(pieces)


def encode_sid(sid: str) -> bytes:
    """ Convert a canonical string security identifier back into its binary form """
    items = sid.split('-')
    revision = int(items[1])
    authority = int(items[2])
    sub_authorities = [int(item) for item in items[3:]]
    header = struct.pack('<BB', revision, len(sub_authorities)) + authority.to_bytes(6, byteorder='big')
    return header + struct.pack('<{}L'.format(len(sub_authorities)), *sub_authorities)


def decode_guid(data: bytes) -> str:
    """ Convert a binary GUID into its braced canonical form, e.g. {6ac1786c-016f-11d2-945f-00c04fb984f9}
    GUIDs go over the wire with their first three fields little endian and the last 8 bytes as-is,
    which is exactly the layout the uuid module calls bytes_le.
    """
    return '{' + str(uuid.UUID(bytes_le=bytes(data[:GUID_LENGTH]))) + '}'
