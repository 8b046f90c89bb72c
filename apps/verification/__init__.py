"""Verification app package.

One-time e-mail codes that gate appointment confirmation. A subject
(an e-mail address) holds at most one live challenge; a code is good
for a single successful verification within its time-to-live.
"""
