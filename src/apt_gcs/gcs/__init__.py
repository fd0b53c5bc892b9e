"""Cloud Storage access: credentials, clients and downloads"""
