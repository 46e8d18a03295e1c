"""HTTP transport for the collector API.

- rest: httpx client with the retry loop
- api: ReportingApiPort implementation
- oauth: bearer tokens via the password and refresh_token grants
- proxy: per-request proxy resolution and connection pooling
"""
