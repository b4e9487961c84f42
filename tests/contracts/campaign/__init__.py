"""
Campaign Service Contract Module

- data_contract.py: test data factories for customers, segments,
  campaigns, delivery logs and vendor receipts
"""
