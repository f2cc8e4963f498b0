from .synthetic import colocalized_spots, correlated_channels, mean_based_noise_image
