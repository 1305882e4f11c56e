"""
Converter Service package.

Proxies conversion requests to the upstream rate provider, records every
client request, upstream exchange and service response as telemetry, and
serves dashboard aggregations over those records.
"""
