"""
Extractor App - Power Position Extraction

Responsibilities:
- Scheduled execution (interval via APScheduler, one cycle on start)
- Fetch the day's trades from the trading service
- Fixed-delay retry of the whole cycle when the trading service fails (tenacity)
- Aggregate volume per hourly period
- Output one CSV per cycle

Output:
- <CSV_FOLDER>/<yyyyMMdd_HHmm>.csv with header LocalTime;Volume
- diagnostics.log (append)
"""
