"""Process supervision for the host.

- **process**: asyncio child-process wrapper (spawn, output pumps, terminate)
- **downstream**: gateway config generation (``openclaw.json``)
- **gateway**: AI-gateway process lifecycle
- **tunnel**: tunnel process lifecycle, URL extraction, DNS wait, exit disposition
- **health**: tunnel reachability monitor (healthy / checking / down)
"""
