# Constants for the application

CURRENCY = '৳'

# Paths the auth gate lets through without any auth signal
PUBLIC_PREFIXES = [
    '/login',
    '/_next',
    '/favicon.ico',
    '/robots.txt',
    '/sitemap.xml',
    '/manifest.json',
    '/sw.js',
    '/assets',
    '/images',
    '/fonts',
    '/static',
    '/api',  # proxy and passthrough routes; the backend decides auth there
]

# Cookies that count as "logged in" for the auth gate
AUTH_COOKIE_KEYS = [
    'access_token',
    'Authorization',
    'JSESSIONID',
    'tb_auth',
    'token',
    'auth_token',
    'tb_access_token',
]

# Cookies a bearer token may be read from, in priority order
BEARER_COOKIE_KEYS = ['Authorization', 'access_token', 'tb_access_token', 'auth_token', 'token']

CSRF_COOKIE_KEYS = ['XSRF-TOKEN', 'xsrf-token', 'csrf-token']
CSRF_HEADER_KEYS = ['x-xsrf-token', 'x-csrf-token', 'x-xcsrf-token']

# Backend session cookies forwarded on server-to-server page fetches
BACKEND_SESSION_COOKIES = ['JSESSIONID', 'tb_auth']

# Login cookie lifetimes (seconds)
REMEMBER_MAX_AGE = 60 * 60 * 24 * 7
SESSION_MAX_AGE = 60 * 60

GENDERS = {
    'MALE': 'Male',
    'FEMALE': 'Female',
    'OTHERS': 'Others',
}

MEASUREMENT_OPTIONS = {
    'NEW': 'New measurement',
    'USE_LAST': 'Use last measurement',
    'REUSE_CURRENT': 'Reuse current measurement',
}

# Wizard photo slots -> imageName expected by /api/photos/upload-base64
PHOTO_IMAGE_NAMES = {
    'orderCloth': 'cloth',
    'designPhoto': 'design',
    'patternPhoto': 'pattern',
    'measurementCloth': 'measurement',
    'designSketch': 'design-sketch',
}

PHOTO_LABELS = {
    'orderCloth': 'Order Cloth Photo',
    'designPhoto': 'Design Photo',
    'patternPhoto': 'Pattern Photo',
    'measurementCloth': 'Measurement Cloth Photo',
    'designSketch': 'Design Sketch',
}

# Edit-photos kinds -> measurement group field
EDIT_PHOTO_FIELDS = {
    'cloth': 'clothPhoto',
    'design': 'designDrawingPhoto',
    'pattern': 'patternClothPhoto',
    'measurement': 'measurementClothPhoto',
}

LIMIT_OPTIONS = [5, 10, 20]

QR_FALLBACK_URL = 'https://api.qrserver.com/v1/create-qr-code/?size=256x256&data={data}'
AVATAR_FALLBACK_URL = 'https://api.dicebear.com/9.x/adventurer-neutral/png?seed={seed}&size={size}&backgroundType=gradientLinear'
