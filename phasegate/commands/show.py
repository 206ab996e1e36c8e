"""
pg show - Print one document, subject to the acting role's read access.

Any role may read its own workspace. Other roles see only the handoffs
currently granted to them. The coordinator may read everything.
"""

import json
import sys

from phasegate.lib.constants import DOCUMENT_KINDS
from phasegate.workflow.coordinator import Coordinator


def cmd_show(args, coordinator: Coordinator) -> int:
    if args.kind not in DOCUMENT_KINDS:
        print(f"ERROR: Unknown kind '{args.kind}' (expected one of {', '.join(DOCUMENT_KINDS)})", file=sys.stderr)
        return 2

    doc = coordinator.read_document(args.actor, args.feature, args.role, args.kind, args.seq)

    if args.json:
        print(json.dumps({
            "ref": str(doc.ref),
            "author": doc.author,
            "created_at": doc.created_at,
            "digest": doc.digest,
            "payload": doc.payload,
        }, indent=2))
        return 0

    print(f"{doc.ref}")
    print(f"  Author:  {doc.author}")
    print(f"  Created: {doc.created_at}")
    print(f"  Digest:  {doc.digest[:16]}")

    payload = dict(doc.payload)
    body = payload.pop("body", None)
    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, sort_keys=True)
        print(f"  {key}: {value}")

    if body is not None:
        print()
        print(body)
    return 0
