"""
MyDorm backend-for-frontend.

Puts the payment backend and the Firebase record/blob stores behind one
FastAPI service, caching catalog data and images for repeat reads.
"""
