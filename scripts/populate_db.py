import os
import sys
import django
import random
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'guidee.settings')
django.setup()

from marketplace.models import (
    User, UserProfile, Service, Booking, Payment, Review,
    Post, PostComment, PostServiceEmbed
)

fake = Faker(['zh_TW', 'en_US'])

DEMO_PASSWORD = 'Guidee@2024'

TAIPEI_SERVICES = [
    {
        'title': '台北夜市美食巡禮',
        'short_description': '跟著在地導遊走訪士林與寧夏夜市，品嚐最道地的台灣小吃。',
        'category': 'FOOD',
        'location': '台北市士林區',
        'price': Decimal('1500.00'),
        'duration_hours': 5,
        'max_guests': 10,
        'tags': ['夜市', '小吃', '美食'],
    },
    {
        'title': '大稻埕老街文化散步',
        'short_description': '走進百年茶行與布行，認識台北開港後的繁華歷史。',
        'category': 'HISTORY',
        'location': '台北市大同區',
        'price': Decimal('1200.00'),
        'duration_hours': 3,
        'max_guests': 12,
        'tags': ['老街', '歷史', '茶'],
    },
    {
        'title': '象山夕陽攝影健行',
        'short_description': '登上象山觀景平台，拍攝台北 101 與城市夕陽。',
        'category': 'PHOTOGRAPHY',
        'location': '台北市信義區',
        'price': Decimal('900.00'),
        'duration_hours': 2,
        'max_guests': 8,
        'tags': ['攝影', '夕陽', '登山'],
    },
    {
        'title': '北投溫泉與地熱谷之旅',
        'short_description': '探訪北投溫泉博物館與地熱谷，體驗日式湯屋文化。',
        'category': 'CULTURE',
        'location': '台北市北投區',
        'price': Decimal('1800.00'),
        'duration_hours': 4,
        'max_guests': 6,
        'tags': ['溫泉', '文化'],
    },
    {
        'title': '陽明山秘境自然探索',
        'short_description': '走訪擎天崗草原與小油坑，觀察火山地形與野生動植物。',
        'category': 'NATURE',
        'location': '台北市陽明山',
        'price': Decimal('2200.00'),
        'duration_hours': 6,
        'max_guests': 10,
        'tags': ['自然', '健行', '火山'],
    },
    {
        'title': '信義區夜生活體驗',
        'short_description': '造訪屋頂酒吧與特色餐酒館，感受台北的夜晚。',
        'category': 'NIGHTLIFE',
        'location': '台北市信義區',
        'price': Decimal('2500.00'),
        'duration_hours': 4,
        'max_guests': 8,
        'tags': ['夜生活', '酒吧'],
    },
]


def create_user(email, role, name, **extra):
    user = User.objects.filter(email=email).first()
    if user:
        return user
    return User.objects.create_user(
        username=email.split('@')[0],
        email=email,
        password=DEMO_PASSWORD,
        name=name,
        role=role,
        **extra
    )


def create_users(num_guides=2, num_customers=2):
    print(f"Creating admin, {num_guides} guides and {num_customers} customers...")

    admin = create_user(
        'admin@guidee.com', User.ROLE_ADMIN, 'Guidee Admin',
        is_superuser=True, is_email_verified=True,
        permissions=['users', 'services', 'bookings', 'kyc', 'support'],
    )

    guides = []
    for index in range(1, num_guides + 1):
        guide = create_user(
            f'guide{index}@guidee.com', User.ROLE_GUIDE, fake.name(),
            is_email_verified=True, is_kyc_verified=True,
            is_criminal_record_verified=random.choice([True, False]),
            preferred_language=random.choice(['zh-hant', 'en']),
        )
        UserProfile.objects.update_or_create(
            user=guide,
            defaults={
                'bio': fake.paragraph(),
                'location': '台北市',
                'languages': random.sample(['中文', 'English', '日本語', '한국어'], 2),
                'specialties': random.sample(['美食', '歷史', '攝影', '自然', '夜生活'], 2),
                'experience_years': random.randint(1, 15),
                'certifications': ['華語導遊執照'],
            }
        )
        guides.append(guide)

    customers = []
    for index in range(1, num_customers + 1):
        customers.append(create_user(
            f'customer{index}@guidee.com', User.ROLE_CUSTOMER, fake.name(),
            is_email_verified=True,
        ))

    print(f"Created {len(guides)} guides and {len(customers)} customers.")
    return admin, guides, customers


def create_services(guides):
    print("Creating Taipei tour services...")
    services = []

    for index, data in enumerate(TAIPEI_SERVICES):
        guide = guides[index % len(guides)]
        service, created = Service.objects.get_or_create(
            guide=guide,
            title=data['title'],
            defaults={
                'short_description': data['short_description'],
                'description': '\n\n'.join(fake.paragraphs(nb=3)),
                'category': data['category'],
                'location': data['location'],
                'price': data['price'],
                'duration_hours': data['duration_hours'],
                'min_guests': 1,
                'max_guests': data['max_guests'],
                'included': ['導遊解說', '飲用水'],
                'not_included': ['個人消費', '交通費'],
                'highlights': [fake.sentence() for _ in range(3)],
                'tags': data['tags'],
                'cancellation_policy': '出發前 48 小時取消全額退款，24-48 小時退款 50%。',
                'status': 'ACTIVE',
            }
        )
        services.append(service)

    print(f"Created {len(services)} services.")
    return services


def create_bookings(customers, services):
    print("Creating bookings...")
    bookings = []

    statuses = ['PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED']

    for customer in customers:
        # Each customer makes 2-4 bookings
        for _ in range(random.randint(2, 4)):
            service = random.choice(services)
            status = random.choice(statuses)

            # Completed tours are in the past, the rest at least two days out
            if status == 'COMPLETED':
                booking_date = timezone.now() - timedelta(days=random.randint(3, 60))
            else:
                booking_date = timezone.now() + timedelta(days=random.randint(3, 45))
            booking_date = booking_date.replace(hour=random.choice([9, 13, 17]), minute=0, second=0, microsecond=0)

            guests = random.randint(service.min_guests, min(service.max_guests, 4))
            base, fee, total = Booking.price_breakdown(service, guests)

            booking = Booking.objects.create(
                service=service,
                traveler=customer,
                guide=service.guide,
                booking_date=booking_date,
                guests=guests,
                duration_hours=service.duration_hours,
                base_price=base,
                service_fee=fee,
                total_amount=total,
                currency=service.currency,
                special_requests=random.choice(['', '素食', '有長輩同行，請放慢步調']),
                contact_info={'name': customer.name, 'phone': fake.phone_number()},
                status=status,
                payment_status='PAID' if status in ('CONFIRMED', 'COMPLETED') else 'UNPAID',
                confirmed_at=timezone.now() if status in ('CONFIRMED', 'COMPLETED') else None,
                completed_at=timezone.now() if status == 'COMPLETED' else None,
                cancelled_at=timezone.now() if status == 'CANCELLED' else None,
                cancelled_by=customer if status == 'CANCELLED' else None,
                cancellation_reason='USER_REQUEST' if status == 'CANCELLED' else '',
            )
            bookings.append(booking)

    print(f"Created {len(bookings)} bookings.")
    return bookings


def create_payments(bookings):
    print("Creating payments...")
    payments = []

    for booking in bookings:
        if booking.payment_status != 'PAID':
            continue
        payment = Payment.objects.create(
            booking=booking,
            user=booking.traveler,
            payment_method=random.choice(['CREDIT_CARD', 'LINE_PAY', 'APPLE_PAY']),
            payment_provider='MOCK',
            provider_payment_id=f"tx_{fake.unique.hexify(text='^' * 24)}",
            amount=booking.total_amount,
            currency=booking.currency,
            status='COMPLETED',
            processed_at=booking.created_at,
        )
        payments.append(payment)

    print(f"Created {len(payments)} payments.")
    return payments


def create_reviews(bookings):
    print("Creating reviews...")
    reviews = []

    completed_bookings = [b for b in bookings if b.status == 'COMPLETED']

    for booking in completed_bookings:
        # 70% chance of leaving a review
        if random.random() < 0.7 and not Review.objects.filter(booking=booking).exists():
            review = Review.objects.create(
                booking=booking,
                service=booking.service,
                guide=booking.guide,
                reviewer=booking.traveler,
                rating=random.randint(3, 5),
                comment=fake.paragraph(),
                pros=[fake.word() for _ in range(2)],
                is_anonymous=random.random() < 0.2,
                is_verified=True,
            )
            reviews.append(review)

    print(f"Created {len(reviews)} reviews.")
    return reviews


def create_posts(guides, customers, services):
    print("Creating posts...")
    posts = []

    for author in guides + customers:
        for _ in range(random.randint(1, 2)):
            is_guide = author.role == User.ROLE_GUIDE
            post = Post.objects.create(
                author=author,
                author_type='GUIDE' if is_guide else 'CONSUMER',
                title=fake.sentence(nb_words=6),
                content='\n\n'.join(fake.paragraphs(nb=4)),
                category=random.choice(['food', 'culture', 'tips', 'nature']),
                tags=random.sample(['台北', '旅遊', '美食', '攝影', '夜市'], 2),
                location='台北市',
                status='PUBLISHED',
                view_count=random.randint(0, 500),
                like_count=random.randint(0, 80),
                share_count=random.randint(0, 20),
            )
            if is_guide:
                own_services = [s for s in services if s.guide_id == author.id]
                if own_services:
                    PostServiceEmbed.objects.create(post=post, service=random.choice(own_services))

            commenters = [u for u in guides + customers if u != author]
            for _ in range(random.randint(0, 3)):
                PostComment.objects.create(post=post, author=random.choice(commenters), content=fake.sentence())
            post.comment_count = post.comments.count()
            post.save(update_fields=['comment_count'])
            posts.append(post)

    print(f"Created {len(posts)} posts.")
    return posts


def main():
    print("Starting database population...")

    # Create Users
    admin, guides, customers = create_users(num_guides=2, num_customers=2)

    # Create Services
    services = create_services(guides)

    # Create Bookings and Payments
    bookings = create_bookings(customers, services)
    create_payments(bookings)

    # Create Reviews
    create_reviews(bookings)

    # Create Posts
    create_posts(guides, customers, services)

    print("Database population completed successfully!")
    print(f"Demo accounts use the password: {DEMO_PASSWORD}")


if __name__ == '__main__':
    main()
