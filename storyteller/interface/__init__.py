"""Terminal presentation layer"""
