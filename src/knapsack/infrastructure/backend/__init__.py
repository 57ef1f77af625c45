"""Knapsack backend adapter."""
