# ecofinds/config.py
import os

from dotenv import load_dotenv

load_dotenv()

# Shared with the product form and the client-side filter
CATEGORIES = ['Electronics', 'Furniture', 'Clothing', 'Books', 'Home Goods', 'Other']
ALL_CATEGORIES = 'All'

GENDERS = ['Male', 'Female', 'Other', 'Prefer not to say']

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///ecofinds.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv('SECRET_KEY', 'devsecret')

    # 'sql' or 'local'
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'sql')
    LOCAL_STORE_PATH = os.getenv('LOCAL_STORE_PATH') or None

    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join('static', 'uploads'))
    UPLOAD_URL = os.getenv('UPLOAD_URL', '/uploads')
    MAX_FILE_SIZE = int(os.getenv('MAX_FILE_SIZE', MAX_FILE_SIZE))
