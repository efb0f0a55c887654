"""
Exporter App - Datadog Logs to CSV

Responsibilities:
- Load the YAML field mapping (credentials, log filter, mapping rules)
- Follow the Logs search cursor until the time range is exhausted
- Optionally split the range into partitions fetched concurrently
- Pace every request through a shared rate limiter
- Project each log into a flat CSV row and append it to the output file

Output:
- CSV file: timestamp, service, status, message, attributes, <mapped columns>
"""
