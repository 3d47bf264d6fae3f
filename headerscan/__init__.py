"""Security header scanner.

Fetches many targets in parallel, evaluates their HTTP response headers
against a rule set and scores each one, while isolating failing domains,
throttling request rate and caching responses on disk.

Key modules:
    dispatcher      -- ScanDispatcher, bounded worker pool driving each target
    circuit_breaker -- CircuitBreaker and BreakerRegistry (one per domain)
    rate_limiter    -- RateLimiter token bucket ("N/s", "N/m", "N/h")
    cache           -- ResponseCache, TTL file store with atomic writes
    analyzer        -- HeaderAnalyzer, ordered rule passes + scoring
    scorer          -- header weights and severity penalties
    rules           -- declarative missing/pattern rules from YAML
    checks          -- CheckRegistry for checker plugins
    builtin_checks  -- cookie, information-disclosure and opt-in CSP, Cache-Control and HSTS checkers
    compare         -- side-by-side comparison of two scan results
    certificate     -- TLS certificate findings
    security_txt    -- security.txt findings
    fetchers        -- RequestsFetcher, CurlFetcher
    factory         -- FetcherFactory for transport selection
    backoff         -- BackoffStrategy for retry delays
    metrics         -- ScanMetrics, per-target outcome summary
    progress        -- ProgressTracker bar and ETA
    storage         -- JSON, JSON Lines and CSV result writers
    config          -- ScanConfig and YAML config loading
    models          -- Target, Finding, ScanResult and friends
"""

__version__ = "0.1.0"
