"""LINE app package.

Registry of LINE Messaging API channels (one per branch, plus a default
channel) and the HTTP client used to push messages through them.
"""
